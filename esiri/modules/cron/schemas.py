# esiri/modules/cron/schemas.py

from pydantic import BaseModel


class LiftSuspensionsResponse(BaseModel):
    lifted_count: int

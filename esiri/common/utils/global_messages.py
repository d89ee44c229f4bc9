class GlobalMessages:
    # Auth Messages
    AUTH_HEADER_MISSING = "Authorization header is missing."
    INVALID_TOKEN = "Could not validate credentials. Please sign in again."
    SESSION_EXPIRED = "Session is inactive or expired."
    INSUFFICIENT_ROLE = "You do not have permission to perform this action."
    INVALID_CRON_SECRET = "Invalid cron secret."
    SESSION_CREATED = "Session created successfully."
    SESSION_EXTENDED = "Session extended successfully."

    # Rate limiting
    RATE_LIMITED = "Too many requests. Please try again later."

    # Generic
    INVALID_REQUEST = "Invalid request."
    INTERNAL_ERROR = "An unexpected error occurred."

    # Device binding
    DEVICE_BOUND = "Device bound successfully."
    DEVICE_BOUND_TO_OTHER = "This device is already bound to another doctor account."
    DOCTOR_HAS_OTHER_DEVICE = "Your account is bound to a different device. Ask an administrator to deauthorize it first."
    DEVICE_BIND_SELF_ONLY = "You can only bind a device to your own account."
    DOCTOR_NOT_FOUND = "Doctor not found."

    # Consultations
    NO_ACTIVE_ACCESS = "No active access for this service. Please complete payment first."
    DOCTOR_NOT_ELIGIBLE = "Selected doctor is not verified for this service."
    CONSULTATION_NOT_FOUND = "Consultation not found."
    CONSULTATION_EXISTS = "You already have an open consultation."
    CONSULTATION_CREATED = "Consultation created successfully."
    CONSULTATION_STATE_CHANGED = "Consultation is no longer in a state that allows this action."
    NOT_CONSULTATION_PARTICIPANT = "You are not a participant in this consultation."

    # Appointments
    APPOINTMENT_NOT_FOUND = "Appointment not found."
    APPOINTMENT_NOT_OWNED = "You can only manage your own appointments."
    APPOINTMENT_STATE_CHANGED = "Appointment is no longer in a state that allows this action."
    APPOINTMENT_IN_PAST = "Appointment time must be in the future."
    APPOINTMENT_SLOT_TAKEN = "The doctor already has an appointment at this time."

    # Payments
    INVALID_PHONE = "Invalid phone number. Use the format 2547XXXXXXXX or 2541XXXXXXXX."
    INVALID_RECHARGE_PACKAGE = "Invalid recharge package."
    ACCESS_ALREADY_ACTIVE = "Active access already exists for this service."
    PAYMENT_INITIATED = "Payment request sent. Enter your M-Pesa PIN to complete."
    PAYMENT_NOT_FOUND = "Payment not found."
    PAYMENT_GATEWAY_FAILED = "Payment gateway request failed."
    CONSULTATION_NOT_RECHARGEABLE = "Consultation must be active or in progress to add minutes."

    # Notifications
    NOTIFICATION_NOT_FOUND = "Notification not found."

    # Video
    CONSULTATION_NOT_LIVE = "Consultation must be active or in progress to join the video call."
    VIDEO_NOT_CONFIGURED = "Video service is not configured."

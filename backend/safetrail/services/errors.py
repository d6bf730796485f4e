class SafeTrailError(Exception):
    """Base class for errors raised by the tracking core."""


class PermissionDenied(SafeTrailError):
    """Location permission is denied or restricted."""


class PermissionPending(SafeTrailError):
    """Location permission has not been decided yet; retry once the user answers."""


class SessionAlreadyActive(SafeTrailError):
    def __init__(self, session_id: str):
        super().__init__(f"Safety session {session_id} is already active")
        self.session_id = session_id


class NoActiveSession(SafeTrailError):
    pass


class PersistenceFailure(SafeTrailError):
    pass


class NoContactsConfigured(SafeTrailError):
    def __init__(self):
        super().__init__("No enabled emergency contacts configured")


class DeliveryFailure(SafeTrailError):
    def __init__(self, contact_id: int, detail: str):
        super().__init__(f"Alert delivery to contact {contact_id} failed: {detail}")
        self.contact_id = contact_id
        self.detail = detail

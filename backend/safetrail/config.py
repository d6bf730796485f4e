from dotenv import load_dotenv, find_dotenv
import os
from functools import lru_cache

# Load .env files for local development
# override=False means real environment variables take precedence over the files
load_dotenv(dotenv_path="default.env", override=False)
load_dotenv(dotenv_path=find_dotenv(".env"), override=False)


def _csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    # Database - local SQLite file by default, any SQLAlchemy URL in production
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./safetrail.db")

    # Public base URL used to build live-location share links (/t/<token>)
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:3001")
    MAP_BASE_URL: str = os.getenv("MAP_BASE_URL", "https://maps.apple.com/")
    TIMEZONE: str = os.getenv("TIMEZONE", "UTC")

    # SMS settings for emergency alerts
    TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    TWILIO_FROM_NUMBER: str = os.getenv("TWILIO_FROM_NUMBER", "")
    TWILIO_MESSAGING_SERVICE_SID: str = os.getenv("TWILIO_MESSAGING_SERVICE_SID", "")

    # Push notification settings (arrival notifications)
    APNS_KEY_ID: str = os.getenv("APNS_KEY_ID", "")
    APNS_TEAM_ID: str = os.getenv("APNS_TEAM_ID", "")
    APNS_BUNDLE_ID: str = os.getenv("APNS_BUNDLE_ID", "com.safetrail.SafeTrail")
    APNS_AUTH_KEY_PATH: str = os.getenv("APNS_AUTH_KEY_PATH", "")
    APNS_PRIVATE_KEY: str = os.getenv("APNS_PRIVATE_KEY", "")
    APNS_USE_SANDBOX: bool = os.getenv("APNS_USE_SANDBOX", "true").lower() == "true"
    PUSH_DEVICE_TOKENS: list[str] = _csv(os.getenv("PUSH_DEVICE_TOKENS", ""))

    # Notification backend settings
    SMS_BACKEND: str = os.getenv("SMS_BACKEND", "dummy")  # "twilio" or "dummy"
    PUSH_BACKEND: str = os.getenv("PUSH_BACKEND", "dummy")  # "apns" or "dummy"

    # Emergency alert delivery
    DEFAULT_EMERGENCY_MESSAGE: str = os.getenv(
        "DEFAULT_EMERGENCY_MESSAGE", "I may be in danger, please contact me"
    )
    ALERT_MAX_RETRIES: int = int(os.getenv("ALERT_MAX_RETRIES", "3"))
    ALERT_RETRY_DELAYS: list[float] = [float(d) for d in _csv(os.getenv("ALERT_RETRY_DELAYS", "1,2,4"))]

    # Location stream
    FIX_QUEUE_SIZE: int = int(os.getenv("FIX_QUEUE_SIZE", "256"))

    def get_apns_private_key(self) -> str:
        """Return the APNs .p8 key, inline value first, then the key file."""
        if self.APNS_PRIVATE_KEY:
            return self.APNS_PRIVATE_KEY.replace("\\n", "\n")
        if self.APNS_AUTH_KEY_PATH and os.path.exists(self.APNS_AUTH_KEY_PATH):
            with open(self.APNS_AUTH_KEY_PATH) as f:
                return f.read()
        return ""


@lru_cache()
def get_settings():
    return Settings()


# Create singleton instance for direct imports
settings = get_settings()

"""Settings read from the process environment (credentials, database, runtime mode)."""

import os
from typing import Dict, List, Optional, Tuple

from email_validator import EmailNotValidError, validate_email

from .exceptions import ConfigurationError

VALID_ENVIRONMENTS = ("production", "staging", "development", "test", "local")
MOCK_ENVIRONMENTS = frozenset({"development", "test"})
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_DATABASE_URL = "sqlite:///./data/notifier.db"
DEFAULT_SMTP_PORT = 587

# Variable name -> EnvironmentConfig attribute, copied through unchanged
PASSTHROUGH_VARIABLES = {
    "DATABASE_URL": "database_url",
    "LOG_LEVEL": "log_level",
    "SMTP_HOST": "smtp_host",
    "SMTP_USER": "smtp_user",
    "SMTP_PASS": "smtp_pass",
    "FROM_EMAIL": "from_email",
    "SENDGRID_API_KEY": "sendgrid_api_key",
    "TWILIO_ACCOUNT_SID": "twilio_account_sid",
    "TWILIO_AUTH_TOKEN": "twilio_auth_token",
    "TWILIO_PHONE_NUMBER": "twilio_phone_number",
    "VONAGE_API_KEY": "vonage_api_key",
    "VONAGE_API_SECRET": "vonage_api_secret",
    "VONAGE_FROM_NUMBER": "vonage_from_number",
    "FCM_PROJECT_ID": "fcm_project_id",
    "FCM_ACCESS_TOKEN": "fcm_access_token",
    "EXPO_ACCESS_TOKEN": "expo_access_token",
}

# Credentials that only work together
CREDENTIAL_PAIRS = (
    ("SMTP_USER", "SMTP_PASS"),
    ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN"),
    ("VONAGE_API_KEY", "VONAGE_API_SECRET"),
    ("FCM_PROJECT_ID", "FCM_ACCESS_TOKEN"),
)


class EnvironmentConfig:
    """Provider credentials and runtime mode for one process."""

    def __init__(
        self,
        environment: str = "development",
        database_url: Optional[str] = None,
        log_level: Optional[str] = None,
        smtp_host: Optional[str] = None,
        smtp_port: int = DEFAULT_SMTP_PORT,
        smtp_user: Optional[str] = None,
        smtp_pass: Optional[str] = None,
        from_email: Optional[str] = None,
        sendgrid_api_key: Optional[str] = None,
        twilio_account_sid: Optional[str] = None,
        twilio_auth_token: Optional[str] = None,
        twilio_phone_number: Optional[str] = None,
        vonage_api_key: Optional[str] = None,
        vonage_api_secret: Optional[str] = None,
        vonage_from_number: Optional[str] = None,
        fcm_project_id: Optional[str] = None,
        fcm_access_token: Optional[str] = None,
        expo_access_token: Optional[str] = None,
    ):
        self.environment = environment
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.log_level = log_level
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.from_email = from_email
        self.sendgrid_api_key = sendgrid_api_key
        self.twilio_account_sid = twilio_account_sid
        self.twilio_auth_token = twilio_auth_token
        self.twilio_phone_number = twilio_phone_number
        self.vonage_api_key = vonage_api_key
        self.vonage_api_secret = vonage_api_secret
        self.vonage_from_number = vonage_from_number or "EventPlanner"
        self.fcm_project_id = fcm_project_id
        self.fcm_access_token = fcm_access_token
        self.expo_access_token = expo_access_token

    @property
    def mock_allowed(self) -> bool:
        """Whether sends may fall back to the mock provider."""
        return self.environment in MOCK_ENVIRONMENTS

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_pass)

    @property
    def sendgrid_configured(self) -> bool:
        return bool(self.sendgrid_api_key)

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)

    @property
    def vonage_configured(self) -> bool:
        return bool(self.vonage_api_key and self.vonage_api_secret)

    @property
    def fcm_configured(self) -> bool:
        return bool(self.fcm_project_id and self.fcm_access_token)

    @property
    def expo_configured(self) -> bool:
        return bool(self.expo_access_token)

    @property
    def sender_email(self) -> Optional[str]:
        """Address used in the From header: FROM_EMAIL, an address-shaped SMTP_USER, then noreply@SMTP_HOST."""
        if self.from_email:
            return self.from_email
        if self.smtp_user and "@" in self.smtp_user:
            return self.smtp_user
        if self.smtp_host:
            return f"noreply@{self.smtp_host}"
        return None


def load_environment_config() -> EnvironmentConfig:
    """
    Read and validate the process environment.

    Nothing is required: without provider credentials, development and
    test processes send through the mock provider. Recognised variables
    are ENVIRONMENT, SMTP_PORT and the keys of ``PASSTHROUGH_VARIABLES``
    (see ``.env.example``).

    Raises:
        ConfigurationError: Listing every invalid variable
    """
    values: Dict[str, Optional[str]] = {
        attribute: os.getenv(name) or None for name, attribute in PASSTHROUGH_VARIABLES.items()
    }
    environment = (os.getenv("ENVIRONMENT") or "development").strip().lower()
    smtp_port, port_error = _parse_port(os.getenv("SMTP_PORT"))

    errors = [error for error in (port_error, *_field_errors(environment, values)) if error]
    errors.extend(_unpaired_credentials())

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in your credentials",
                "Set provider credentials in pairs (user and password, key and secret)",
            ],
        )

    return EnvironmentConfig(environment=environment, smtp_port=smtp_port, **values)


def _parse_port(raw: Optional[str]) -> Tuple[int, Optional[str]]:
    if not raw:
        return DEFAULT_SMTP_PORT, None
    try:
        port = int(raw)
    except ValueError:
        return DEFAULT_SMTP_PORT, f"SMTP_PORT must be an integer, got '{raw}'"
    if not 1 <= port <= 65535:
        return DEFAULT_SMTP_PORT, f"SMTP_PORT must be between 1 and 65535, got {port}"
    return port, None


def _field_errors(environment: str, values: Dict[str, Optional[str]]) -> List[Optional[str]]:
    from_email = values["from_email"]
    log_level = values["log_level"]
    return [
        None
        if environment in VALID_ENVIRONMENTS
        else f"ENVIRONMENT must be one of {', '.join(VALID_ENVIRONMENTS)}, got '{environment}'",
        None
        if not from_email or _is_valid_email(from_email)
        else f"FROM_EMAIL is not a valid address: '{from_email}'",
        None
        if not log_level or log_level.upper() in LOG_LEVELS
        else f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got '{log_level}'",
    ]


def _unpaired_credentials() -> List[str]:
    errors = []
    for first, second in CREDENTIAL_PAIRS:
        present = [name for name in (first, second) if os.getenv(name)]
        if len(present) == 1:
            missing = second if present[0] == first else first
            errors.append(f"{present[0]} is set but {missing} is not; set both or neither")
    return errors


def _is_valid_email(address: str) -> bool:
    try:
        validate_email(address, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True

"""
Reply Validation Service
Validates and types the user's answer to a question node.
"""
import math
import re
from datetime import datetime
from typing import Optional, Any

from pydantic import BaseModel

from utils.log_utils import LogUtil
from models.flow_data import QuestionConfiguration

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-\(\)]+$")
NUMBER_PATTERN = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")

# ISO first, then day-first and month-name formats users tend to type
DATE_FORMATS = [
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%B %d, %Y",
    "%b %d, %Y",
]


class ReplyValidationResult(BaseModel):
    is_valid: bool
    processed_value: Optional[Any] = None
    error_message: Optional[str] = None


class ReplyValidationService:
    """
    Service for validating user replies against the question's input type.
    An invalid reply is a normal outcome, never an exception.
    """

    def __init__(self, log_util: LogUtil):
        self.log_util = log_util

    def validate_reply(self, user_reply: Optional[str], config: QuestionConfiguration) -> ReplyValidationResult:
        trimmed = (user_reply or "").strip()

        if not trimmed:
            if config.required:
                return self._invalid(config, "This field is required.")
            return ReplyValidationResult(is_valid=True, processed_value=None)

        input_type = config.inputType or "text"
        if input_type == "email":
            result = self._validate_email(trimmed)
        elif input_type == "number":
            result = self._validate_number(trimmed, config)
        elif input_type == "date":
            result = self._validate_date(trimmed)
        elif input_type == "choice":
            result = self._validate_choice(trimmed, config)
        elif input_type == "phone":
            result = self._validate_phone(trimmed)
        else:
            result = self._validate_text(trimmed, config)

        if not result.is_valid:
            self.log_util.debug(
                service_name="ReplyValidationService",
                message=f"Reply '{trimmed}' rejected for input type {input_type}: {result.error_message}"
            )
            # Choice errors list the options, keep that even when a custom message exists
            if input_type != "choice":
                return self._invalid(config, result.error_message)
        return result

    def _invalid(self, config: QuestionConfiguration, default_message: str) -> ReplyValidationResult:
        message = default_message
        if config.validation and config.validation.errorMessage:
            message = config.validation.errorMessage
        return ReplyValidationResult(is_valid=False, error_message=message)

    def _validate_email(self, reply: str) -> ReplyValidationResult:
        if not EMAIL_PATTERN.match(reply):
            return ReplyValidationResult(is_valid=False, error_message="Please provide a valid email address.")
        return ReplyValidationResult(is_valid=True, processed_value=reply)

    def _validate_number(self, reply: str, config: QuestionConfiguration) -> ReplyValidationResult:
        normalized = reply.replace(",", "")
        if not NUMBER_PATTERN.match(normalized):
            return ReplyValidationResult(is_valid=False, error_message="Please enter a valid number.")
        number = float(normalized)
        if not math.isfinite(number):
            return ReplyValidationResult(is_valid=False, error_message="Please enter a valid number.")

        validation = config.validation
        if validation is not None:
            if validation.min is not None and number < validation.min:
                return ReplyValidationResult(is_valid=False, error_message=f"Please enter a number of at least {_format_bound(validation.min)}.")
            if validation.max is not None and number > validation.max:
                return ReplyValidationResult(is_valid=False, error_message=f"Please enter a number no greater than {_format_bound(validation.max)}.")

        processed: Any = int(number) if number.is_integer() else number
        return ReplyValidationResult(is_valid=True, processed_value=processed)

    def _validate_date(self, reply: str) -> ReplyValidationResult:
        for date_format in DATE_FORMATS:
            try:
                parsed = datetime.strptime(reply, date_format)
            except ValueError:
                continue
            return ReplyValidationResult(is_valid=True, processed_value=parsed.date().isoformat())
        return ReplyValidationResult(is_valid=False, error_message="Please enter a valid date (YYYY-MM-DD).")

    def _validate_choice(self, reply: str, config: QuestionConfiguration) -> ReplyValidationResult:
        choices = config.choices or []
        lowered = reply.lower()
        for choice in choices:
            if choice.value.lower() == lowered or choice.label.lower() == lowered:
                return ReplyValidationResult(is_valid=True, processed_value=choice.value)

        options = ", ".join(choice.label for choice in choices)
        return ReplyValidationResult(
            is_valid=False,
            error_message=f"Please select a valid option: {options}" if options else "Please select a valid option."
        )

    def _validate_phone(self, reply: str) -> ReplyValidationResult:
        digits = re.sub(r"\D", "", reply)
        if not PHONE_PATTERN.match(reply) or len(digits) < 7:
            return ReplyValidationResult(is_valid=False, error_message="Please enter a valid phone number.")
        return ReplyValidationResult(is_valid=True, processed_value=reply)

    def _validate_text(self, reply: str, config: QuestionConfiguration) -> ReplyValidationResult:
        validation = config.validation
        if validation is not None:
            if validation.minLength is not None and len(reply) < validation.minLength:
                return ReplyValidationResult(is_valid=False, error_message=f"Please enter at least {validation.minLength} characters.")
            if validation.maxLength is not None and len(reply) > validation.maxLength:
                return ReplyValidationResult(is_valid=False, error_message=f"Please enter no more than {validation.maxLength} characters.")
            if validation.pattern and not re.fullmatch(validation.pattern, reply):
                return ReplyValidationResult(is_valid=False, error_message="Invalid input. Please try again.")
        return ReplyValidationResult(is_valid=True, processed_value=reply)


def _format_bound(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)

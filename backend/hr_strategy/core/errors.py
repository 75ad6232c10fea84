from typing import Optional


class HRStrategyError(Exception):
    """Base error carrying a message that is safe to show to users"""

    default_message = "An unexpected error occurred."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ProviderError(HRStrategyError):
    """Network or provider-side failure while calling the language model"""

    default_message = "The AI service could not complete the request. Please try again later."


class ProviderNotConfiguredError(ProviderError):
    """No credential is configured for the language model"""

    default_message = "The AI service is not configured on the server."


class DecodeError(HRStrategyError):
    """Provider output did not contain a parsable JSON object"""

    default_message = "The AI response could not be interpreted."

    def __init__(self, raw_text: str, message: Optional[str] = None):
        self.raw_text = raw_text
        super().__init__(message)


class ValidationError(HRStrategyError):
    """Input or derived value failed a structural check"""

    default_message = "The provided data is invalid."


class FileFormatError(HRStrategyError):
    """Spreadsheet is unreadable or misses expected headers"""

    default_message = (
        "Failed to read the spreadsheet. Check that the header row "
        "(ID, Name, DiagnosisJSON, ...) and the data format are correct."
    )


class TransitionError(HRStrategyError):
    """Event is not allowed in the current screen state"""

    default_message = "This action is not available right now."

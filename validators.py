from typing import Dict, List, Optional


class TextValidator:
    """Basic text checks applied to request input before it reaches the store."""

    @staticmethod
    def is_non_empty(text: Optional[str]) -> bool:
        if text is None:
            return False
        if not isinstance(text, str):
            return False
        return bool(text.strip())

    @staticmethod
    def missing_fields(fields: Dict[str, Optional[str]]) -> List[str]:
        """Return the names of fields that are missing or blank, in input order."""
        return [name for name, value in fields.items() if not TextValidator.is_non_empty(value)]


class RegistrationValidator:

    @staticmethod
    def validate(username: Optional[str], password: Optional[str], full_name: Optional[str]) -> List[str]:
        return TextValidator.missing_fields({
            "username": username,
            "password": password,
            "fullName": full_name,
        })

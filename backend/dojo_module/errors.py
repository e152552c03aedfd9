class DojoError(Exception):
    """Base class for every error the dojo core raises on purpose.

    ``status_code`` is the HTTP status the API layer answers with.
    """

    status_code = 500


class NotFound(DojoError):
    status_code = 404

    def __init__(self, entity: str, record_id):
        super().__init__(f"{entity} {record_id} not found")
        self.entity = entity
        self.record_id = record_id


class ValidationError(DojoError):
    status_code = 400


class LeadAlreadyConverted(ValidationError):
    status_code = 409

    def __init__(self, lead_id: int):
        super().__init__(f"Lead {lead_id} is already converted")
        self.lead_id = lead_id


class SchemaError(DojoError):
    pass


class StorageError(DojoError):
    pass


class AuthError(DojoError):
    status_code = 401

"""Base model for authcache Pydantic models.

Snapshots, statistics and settings sections all serialize the same way so
diagnostics output stays stable between the CLI and the JSON log renderer.
"""

from pydantic import BaseModel, ConfigDict


class AuthCacheBaseModel(BaseModel):
    """Base model class for authcache Pydantic models.

    - extra="forbid": unknown fields are configuration mistakes, not data
    - use_enum_values: enums serialize as their string values
    - validate_assignment: settings changed at runtime are re-validated
    """

    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
        use_enum_values=True,
        validate_assignment=True,
    )

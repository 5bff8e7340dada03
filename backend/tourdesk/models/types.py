from sqlalchemy import Enum as SQLEnum


def value_enum(enum_cls, length: int = 20) -> SQLEnum:
    """Store enum values (not member names) in a plain VARCHAR column."""
    return SQLEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
    )

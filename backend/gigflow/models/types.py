from decimal import Decimal

from sqlalchemy import Enum as SAEnum, Numeric


class CaseInsensitiveEnum(SAEnum):
    """Enum column stored as its lower-case string value.

    Accepts enum members or raw strings in any case on write, so status
    values posted by collaborators ("HELD", "held") land on the same member.
    """

    def __init__(self, enum_cls, **kwargs):
        self._enum_cls = enum_cls
        self._enum_kwargs = kwargs.copy()
        kwargs.setdefault("values_callable", lambda enum: [e.value for e in enum])
        kwargs.setdefault("native_enum", False)
        kwargs.setdefault("length", 32)
        super().__init__(enum_cls, **kwargs)

    def adapt(self, impltype, **kw):
        params = {**self._enum_kwargs, **kw}
        return CaseInsensitiveEnum(self._enum_cls, **params)

    def bind_processor(self, dialect):
        parent = super().bind_processor(dialect)

        def process(value):
            if value is None:
                return None
            value = value.lower() if isinstance(value, str) else value.value
            return parent(value) if parent else value

        return process


# Fixed-point money and percentage columns; money never touches Float.
Money = Numeric(12, 2, asdecimal=True)
Percentage = Numeric(5, 2, asdecimal=True)


CENTS = Decimal("0.01")

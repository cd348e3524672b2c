import enum


class Capability(str, enum.Enum):
    APPLY = "apply"
    POST_OPPORTUNITY = "post_opportunity"
    RESPOND = "respond"
    SIGN = "sign"
    CANCEL = "cancel"
    CONFIRM_COMPLETION = "confirm_completion"


_DEAL_CAPABILITIES = frozenset(
    {Capability.RESPOND, Capability.SIGN, Capability.CANCEL, Capability.CONFIRM_COMPLETION}
)


class Party(str, enum.Enum):
    """Kind of marketplace user. Each member carries a fixed capability set."""

    ARTIST = "artist"
    ORGANIZER = "organizer"
    VENUE = "venue"

    @property
    def capabilities(self) -> frozenset:
        return _PARTY_CAPABILITIES[self]

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @property
    def side(self) -> "Side":
        """Which side of a deal this kind of user sits on."""
        return Side.ARTIST if self is Party.ARTIST else Side.ORGANIZER


_PARTY_CAPABILITIES = {
    Party.ARTIST: _DEAL_CAPABILITIES | {Capability.APPLY},
    Party.ORGANIZER: _DEAL_CAPABILITIES | {Capability.POST_OPPORTUNITY},
    Party.VENUE: _DEAL_CAPABILITIES | {Capability.POST_OPPORTUNITY},
}


class Side(str, enum.Enum):
    """The two sides of a booking. Venues act on the organizer side."""

    ARTIST = "artist"
    ORGANIZER = "organizer"

    @property
    def other(self) -> "Side":
        return Side.ORGANIZER if self is Side.ARTIST else Side.ARTIST

from dataclasses import dataclass, replace
from enum import Enum, IntEnum
from typing import Optional, Union


class UnknownSettingError(ValueError):
    pass


class UnknownComponentError(ValueError):
    pass


class SanitizerMode(IntEnum):
    AUTOMATIC = 0
    MANUAL_EMOTE = 1
    MANUAL_MENTION = 2
    MANUAL_BOTH = 3

    @property
    def component_id(self) -> str:
        return self.name.lower()

    @classmethod
    def from_db(cls, value) -> "SanitizerMode":
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return cls.AUTOMATIC

    @classmethod
    def parse(cls, component_id: str) -> "SanitizerMode":
        for mode in cls:
            if mode.component_id == component_id:
                return mode
        raise UnknownSettingError(f"Unknown sanitizer mode: {component_id}")

    @property
    def uses_marker(self) -> bool:
        return self in (SanitizerMode.MANUAL_EMOTE, SanitizerMode.MANUAL_BOTH)

    @property
    def uses_mention(self) -> bool:
        return self in (SanitizerMode.MANUAL_MENTION, SanitizerMode.MANUAL_BOTH)


class DeletePermission(IntEnum):
    AUTHOR_AND_MODS = 0
    EVERYONE = 1
    DISABLED = 2

    @property
    def component_id(self) -> str:
        return self.name.lower()

    @classmethod
    def from_db(cls, value) -> "DeletePermission":
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return cls.AUTHOR_AND_MODS

    @classmethod
    def parse(cls, component_id: str) -> "DeletePermission":
        for permission in cls:
            if permission.component_id == component_id:
                return permission
        raise UnknownSettingError(f"Unknown delete permission: {component_id}")


class HideOriginalEmbed(Enum):
    ON = "on"
    OFF = "off"

    @property
    def component_id(self) -> str:
        return self.value

    @classmethod
    def from_bool(cls, hide: bool) -> "HideOriginalEmbed":
        return cls.ON if hide else cls.OFF

    @classmethod
    def parse(cls, component_id: str) -> "HideOriginalEmbed":
        try:
            return cls(component_id)
        except ValueError:
            raise UnknownSettingError(f"Unknown hide original embed setting: {component_id}") from None


class SettingsMenu(Enum):
    SANITIZER_MODE = "sanitizer_mode"
    DELETE_PERMISSION = "delete_permission"
    HIDE_ORIGINAL_EMBED = "hide_original_embed"

    @property
    def component_id(self) -> str:
        return self.value


DELETE_BUTTON_ID = "delete"


@dataclass(frozen=True)
class DeleteComponent:
    pass


@dataclass(frozen=True)
class SettingsComponent:
    menu: SettingsMenu


ComponentId = Union[DeleteComponent, SettingsComponent]


def parse_component_id(custom_id: str) -> ComponentId:
    if custom_id == DELETE_BUTTON_ID:
        return DeleteComponent()
    for menu in SettingsMenu:
        if menu.component_id == custom_id:
            return SettingsComponent(menu)
    raise UnknownComponentError(f"Unknown component: {custom_id}")


@dataclass(frozen=True)
class GuildPolicy:
    guild_id: int
    sanitizer_mode: SanitizerMode = SanitizerMode.AUTOMATIC
    delete_permission: DeletePermission = DeletePermission.AUTHOR_AND_MODS
    hide_original_embed: bool = True

    @classmethod
    def default(cls, guild_id: int) -> "GuildPolicy":
        return cls(guild_id=guild_id)

    @classmethod
    def from_row(cls, row) -> "GuildPolicy":
        guild_id, sanitizer_mode, delete_permission, hide_original_embed = row
        return cls(
            guild_id=int(guild_id),
            sanitizer_mode=SanitizerMode.from_db(sanitizer_mode),
            delete_permission=DeletePermission.from_db(delete_permission),
            hide_original_embed=bool(hide_original_embed),
        )

    def to_row(self) -> tuple:
        return (
            self.guild_id,
            int(self.sanitizer_mode),
            int(self.delete_permission),
            self.hide_original_embed,
        )

    def with_selection(self, menu: SettingsMenu, value: str) -> "GuildPolicy":
        """Returns a copy with one settings-menu selection applied."""
        if menu is SettingsMenu.SANITIZER_MODE:
            return replace(self, sanitizer_mode=SanitizerMode.parse(value))
        if menu is SettingsMenu.DELETE_PERMISSION:
            return replace(self, delete_permission=DeletePermission.parse(value))
        hide = HideOriginalEmbed.parse(value)
        return replace(self, hide_original_embed=hide is HideOriginalEmbed.ON)


@dataclass(frozen=True)
class IncomingMessage:
    message_id: int
    channel_id: int
    guild_id: Optional[int]
    author_id: int
    author_is_bot: bool
    content: str
    mentions_bot: bool = False
    is_reply: bool = False
    referenced: Optional["IncomingMessage"] = None


@dataclass(frozen=True)
class ReactionEvent:
    message_id: int
    channel_id: int
    guild_id: Optional[int]
    user_id: int
    user_is_bot: bool
    emoji: str


@dataclass(frozen=True)
class PostedMessage:
    channel_id: int
    message_id: int


@dataclass(frozen=True)
class EmbedInfo:
    title: Optional[str] = None
    description: Optional[str] = None
    has_video: bool = False


def can_delete(
    policy: GuildPolicy,
    user_id: int,
    original_author_id: Optional[int],
    can_manage_messages: bool,
) -> bool:
    if policy.delete_permission is DeletePermission.EVERYONE:
        return True
    if policy.delete_permission is DeletePermission.DISABLED:
        return False
    is_author = original_author_id is not None and original_author_id == user_id
    return is_author or can_manage_messages

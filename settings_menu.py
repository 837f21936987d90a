import discord

from models import DeletePermission, GuildPolicy, HideOriginalEmbed, SanitizerMode, SettingsMenu
from policy_cache import GuildPolicyCache

CONFIRMATIONS = {
    SettingsMenu.SANITIZER_MODE: "✅ Sanitizer Mode updated",
    SettingsMenu.DELETE_PERMISSION: "✅ Delete Permission updated",
    SettingsMenu.HIDE_ORIGINAL_EMBED: "✅ Original Link Preview updated",
}

# label, description, emoji
MODE_OPTIONS = {
    SanitizerMode.AUTOMATIC: ("Automatic", "Fix links automatically. (Default)", "🤖"),
    SanitizerMode.MANUAL_EMOTE: ("Manual: Emote", "Fix links once a emoji reaction is added.", "🎭"),
    SanitizerMode.MANUAL_MENTION: ("Manual: Mention", "Fix links by mentioning the bot in a message.", "💬"),
    SanitizerMode.MANUAL_BOTH: ("Manual: Emote + Mention", "Fix links either on emoji reaction or on mention.", "🔁"),
}

DELETE_OPTIONS = {
    DeletePermission.AUTHOR_AND_MODS: ("Author and Mods", "Author & users that can Manage Messages. (Default)", "👥"),
    DeletePermission.EVERYONE: ("Everyone", "Allow any user to delete the bot response.", "🌐"),
    DeletePermission.DISABLED: ("Disabled", "Do not add a delete button.", "🚫"),
}

HIDE_OPTIONS = {
    HideOriginalEmbed.ON: ("On", "Hide the original link preview. (Default)", "🙈"),
    HideOriginalEmbed.OFF: ("Off", "Keep the original link preview visible.", "👀"),
}


def _select(menu: SettingsMenu, placeholder: str, options: dict, current) -> discord.ui.Select:
    return discord.ui.Select(
        custom_id=menu.component_id,
        placeholder=placeholder,
        min_values=1,
        max_values=1,
        options=[
            discord.SelectOption(
                label=label,
                value=choice.component_id,
                description=description,
                emoji=emoji,
                default=choice == current,
            )
            for choice, (label, description, emoji) in options.items()
        ],
    )


class SettingsView(discord.ui.View):
    def __init__(self, policy: GuildPolicy):
        super().__init__(timeout=None)
        self.add_item(_select(
            SettingsMenu.SANITIZER_MODE, "Select Sanitizer Mode", MODE_OPTIONS, policy.sanitizer_mode
        ))
        self.add_item(_select(
            SettingsMenu.DELETE_PERMISSION, "Select Delete Button Permission", DELETE_OPTIONS, policy.delete_permission
        ))
        self.add_item(_select(
            SettingsMenu.HIDE_ORIGINAL_EMBED,
            "Hide Original Link Preview",
            HIDE_OPTIONS,
            HideOriginalEmbed.from_bool(policy.hide_original_embed),
        ))


def settings_embed(policy: GuildPolicy) -> discord.Embed:
    mode_label = MODE_OPTIONS[policy.sanitizer_mode][0]
    delete_label = DELETE_OPTIONS[policy.delete_permission][0]
    hide_label = HIDE_OPTIONS[HideOriginalEmbed.from_bool(policy.hide_original_embed)][0]

    embed = discord.Embed(title="Sanitizer Settings 🛠️", color=discord.Color.blurple())
    embed.add_field(name="Sanitizer Mode", value=f"Change how the bot can be activated.\nCurrent: **{mode_label}**", inline=False)
    embed.add_field(name="Delete Button", value=f"Change who is allowed to delete the responses of the bot.\nCurrent: **{delete_label}**", inline=False)
    embed.add_field(name="Hide Original Link Preview", value=f"Suppress the embed of the original message once fixed.\nCurrent: **{hide_label}**", inline=False)
    return embed


async def apply_selection(cache: GuildPolicyCache, guild_id: int, menu: SettingsMenu, value: str) -> str:
    """
    Applies one select-menu choice through the cache. Raises
    UnknownSettingError for a bad value and PolicyStoreError if the write did
    not persist (the cache still holds the new value).
    """
    policy = await cache.get_or_fetch(guild_id)
    await cache.update(policy.with_selection(menu, value))
    return CONFIRMATIONS[menu]

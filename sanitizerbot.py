import asyncio
import os
import signal
from typing import Optional

import discord
from discord import app_commands

from config import CONFIG_PATH, DEFAULT_CONFIG, BotConfig, ConfigError, load_config, write_default_config
from context import AppContext
from discord_adapter import ERROR_COLOR, DiscordTransport, SanitizeResultView, build_incoming, build_reaction, embed_info
from guardian import ERROR_DESCRIPTION, ERROR_TITLE, GuardianSettings, ResponseGuardian
from logs import log_debug, log_error, log_info, log_warning, setup_logging
from models import (
    DeleteComponent,
    DeletePermission,
    GuildPolicy,
    PostedMessage,
    SettingsComponent,
    SettingsMenu,
    UnknownComponentError,
    UnknownSettingError,
    can_delete,
    parse_component_id,
)
from platforms import contains_link
from policy_cache import GuildPolicyCache
from rewriter import AuthorLookup, sanitize_text
from settings_menu import SettingsView, apply_selection, settings_embed
from storage import PolicyStore, PolicyStoreError
from triggers import handle_message, handle_reaction

CREDITS = {
    "Twitter / X": "[FxTwitter](https://github.com/FxEmbed/FxEmbed)",
    "TikTok": "[kkScript](https://kkscript.com)",
    "Instagram": "[InstaFix](https://github.com/Wikidepia/InstaFix)",
    "Twitch": "[FxTwitch](https://github.com/seriaati/fxtwitch)",
    "Reddit": "[rxddit](https://github.com/MinnDevelopment/fxreddit)",
}


class SanitizerClient(discord.Client):
    """
    discord.Client that owns the app context and tracks the handler tasks it
    is running, so a shutdown can let them finish before closing the store.
    """

    def __init__(self, **options):
        super().__init__(**options)
        self.config: Optional[BotConfig] = None
        self.store: Optional[PolicyStore] = None
        self.app: Optional[AppContext] = None
        self.accepting = True
        self._handlers: set = set()

    async def setup_hook(self):
        config = self.config
        self.store = PolicyStore(config.database_path, config.replica_path)
        await self.store.initial_sync()

        transport = DiscordTransport(self)
        settings = GuardianSettings(
            poll_interval=config.poll_interval,
            timeout=config.embed_timeout,
            notice_lifetime=config.error_notice_lifetime,
        )
        self.app = AppContext(
            bot_user_id=self.user.id,
            marker_emoji=config.marker_emoji,
            cache=GuildPolicyCache(self.store, config.cache_capacity),
            transport=transport,
            lookup=AuthorLookup(timeout=config.lookup_timeout),
            guardian=ResponseGuardian(transport, settings),
        )

    def track_handler(self) -> bool:
        """Registers the running event task. False once shutdown started."""
        if not self.accepting or self.app is None:
            return False
        task = asyncio.current_task()
        if task is not None:
            self._handlers.add(task)
            task.add_done_callback(self._handlers.discard)
        return True

    async def shutdown(self):
        self.accepting = False
        if self._handlers:
            log_info(f"Waiting for {len(self._handlers)} running handlers to finish...")
            await asyncio.gather(*self._handlers, return_exceptions=True)
        await self.close()

    async def release(self):
        if self.app is not None:
            await self.app.lookup.close()
            log_debug(f"Policy cache stats at shutdown: {self.app.cache.stats()}")
        if self.store is not None:
            await self.store.wait_for_sync()
            self.store.close()


intents = discord.Intents.default()
intents.message_content = True
client = SanitizerClient(intents=intents)

tree = app_commands.CommandTree(client)


#----------------------- events -----------------------
@client.event
async def on_ready():
    await tree.sync()
    await client.change_presence(
        activity=discord.Activity(type=discord.ActivityType.watching, name=client.config.presence)
    )
    log_info(f"Logged in as {client.user} ({client.user.id}) in {len(client.guilds)} guilds")


@client.event
async def on_message(message: discord.Message):
    if message.author.id == client.user.id:
        return
    # cheap checks before any api call
    if not contains_link(message.content) and message.type != discord.MessageType.reply:
        return
    if not client.track_handler():
        return

    try:
        incoming = await build_incoming(message, client.user.id)
        await handle_message(client.app, incoming)
    except discord.HTTPException as e:
        log_error(f"Failed to sanitize message {message.id} in channel {message.channel.id}: {e}")


@client.event
async def on_raw_reaction_add(payload: discord.RawReactionActionEvent):
    if payload.user_id == client.user.id or not client.track_handler():
        return

    try:
        await handle_reaction(client.app, build_reaction(payload))
    except discord.HTTPException as e:
        log_error(f"Failed to handle reaction on message {payload.message_id}: {e}")


@client.event
async def on_guild_join(guild: discord.Guild):
    log_info(f"Joined guild {guild.name} ({guild.id})")
    if client.track_handler():
        await client.app.cache.ensure_guild(guild.id)


@client.event
async def on_interaction(interaction: discord.Interaction):
    if interaction.type != discord.InteractionType.component:
        return
    if not client.track_handler():
        return

    custom_id = (interaction.data or {}).get("custom_id", "")
    try:
        component = parse_component_id(custom_id)
    except UnknownComponentError as e:
        log_debug(f"Ignoring interaction: {e}")
        return

    try:
        if isinstance(component, DeleteComponent):
            await handle_delete_button(interaction)
        elif isinstance(component, SettingsComponent):
            await handle_settings_select(interaction, component.menu)
    except discord.HTTPException as e:
        log_error(f"Failed to handle component {custom_id} from {interaction.user}: {e}")


#----------------------- components -----------------------
async def _policy_for(interaction: discord.Interaction) -> GuildPolicy:
    if interaction.guild_id is None:
        return GuildPolicy.default(0)
    return await client.app.cache.get_or_fetch(interaction.guild_id)


async def _original_author_id(message: discord.Message) -> Optional[int]:
    # responses to /sanitize belong to whoever ran the command
    metadata = message.interaction_metadata
    if metadata is not None:
        return metadata.user.id

    reference = message.reference
    if reference is None or reference.message_id is None:
        return None
    resolved = reference.resolved
    if isinstance(resolved, discord.Message):
        return resolved.author.id
    try:
        original = await message.channel.fetch_message(reference.message_id)
    except (discord.NotFound, discord.Forbidden):
        return None
    return original.author.id


async def handle_delete_button(interaction: discord.Interaction):
    message = interaction.message
    policy = await _policy_for(interaction)
    author_id = await _original_author_id(message)

    if not can_delete(policy, interaction.user.id, author_id, interaction.permissions.manage_messages):
        await interaction.response.send_message("You do not have permission to delete this message", ephemeral=True)
        return

    await interaction.response.defer()
    try:
        await interaction.delete_original_response()
    except discord.NotFound:
        log_info(f"Response {message.id} was already removed.")
        return
    log_info(f"{interaction.user} ({interaction.user.id}) deleted response {message.id}")

    reference = message.reference
    if policy.hide_original_embed and reference is not None and reference.message_id is not None:
        try:
            await client.app.transport.set_embeds_suppressed(reference.channel_id, reference.message_id, False)
        except (discord.NotFound, discord.Forbidden):
            log_debug(f"Could not restore embeds on message {reference.message_id}")


async def handle_settings_select(interaction: discord.Interaction, menu: SettingsMenu):
    if interaction.guild_id is None or not interaction.permissions.manage_guild:
        await interaction.response.send_message("You don't have permission to do this.", ephemeral=True)
        return

    values = (interaction.data or {}).get("values") or [""]
    try:
        confirmation = await apply_selection(client.app.cache, interaction.guild_id, menu, values[0])
    except UnknownSettingError as e:
        log_warning(f"Rejected settings value from {interaction.user}: {e}")
        await interaction.response.send_message("Unknown setting.", ephemeral=True)
        return
    except PolicyStoreError:
        await interaction.response.send_message(
            "Setting applied, but it could not be saved. It may reset after a restart.", ephemeral=True
        )
        return

    log_info(f"{interaction.user} changed {menu.component_id} to {values[0]} in guild {interaction.guild_id}")
    await interaction.response.send_message(confirmation, ephemeral=True)


#----------------------- commands -----------------------
@tree.command(name="settings", description="Change how the bot behaves in this server")
@app_commands.guild_only()
@app_commands.default_permissions(manage_guild=True)
async def settings_command(interaction: discord.Interaction):
    policy = await client.app.cache.get_or_fetch(interaction.guild_id)
    view = SettingsView(policy)
    await interaction.response.send_message(embed=settings_embed(policy), view=view, ephemeral=True)
    view.stop()


async def _sanitize_interaction(interaction: discord.Interaction, text: str):
    if not client.track_handler():
        await interaction.response.send_message("The bot is shutting down, try again in a moment.", ephemeral=True)
        return

    link = sanitize_text(text)
    if link is None:
        await interaction.response.send_message("No supported link found.", ephemeral=True)
        return

    await interaction.response.defer(thinking=True)
    link = await client.app.lookup.enrich(link)
    policy = await _policy_for(interaction)

    view = SanitizeResultView(link.original_url, policy.delete_permission is not DeletePermission.DISABLED)
    sent = await interaction.followup.send(link.caption, view=view, wait=True)
    view.stop()
    log_info(f"{interaction.user} sanitized {link.original_url} -> {link.rewritten_url}")

    async def fetch_embeds():
        try:
            message = await interaction.followup.fetch_message(sent.id)
        except discord.NotFound:
            return None
        return [embed_info(embed) for embed in message.embeds]

    posted = PostedMessage(channel_id=sent.channel.id, message_id=sent.id)
    verdict = await client.app.guardian.await_verdict(posted, link, fetch_embeds)
    # None: the invoker already deleted the response
    if verdict is None or verdict:
        return

    try:
        await sent.delete()
    except discord.NotFound:
        log_info(f"Response {sent.id} was already removed.")
    embed = discord.Embed(title=ERROR_TITLE, description=ERROR_DESCRIPTION, color=ERROR_COLOR)
    await interaction.followup.send(embed=embed, ephemeral=True)


@tree.command(name="sanitize", description="Sanitize a link")
@app_commands.describe(link="The link to sanitize")
@app_commands.allowed_installs(guilds=True, users=True)
@app_commands.allowed_contexts(guilds=True, dms=True, private_channels=True)
async def sanitize_command(interaction: discord.Interaction, link: app_commands.Range[str, 1, 100]):
    try:
        await _sanitize_interaction(interaction, link)
    except discord.HTTPException as e:
        log_error(f"Failed to sanitize link for {interaction.user}: {e}")


@tree.context_menu(name="Sanitize")
@app_commands.allowed_installs(guilds=True, users=True)
@app_commands.allowed_contexts(guilds=True, dms=True, private_channels=True)
async def sanitize_context_menu(interaction: discord.Interaction, message: discord.Message):
    try:
        await _sanitize_interaction(interaction, message.content)
    except discord.HTTPException as e:
        log_error(f"Failed to sanitize message {message.id} for {interaction.user}: {e}")


@tree.command(name="credits", description="The services that make the embeds work")
@app_commands.allowed_installs(guilds=True, users=True)
@app_commands.allowed_contexts(guilds=True, dms=True, private_channels=True)
async def credits_command(interaction: discord.Interaction):
    embed = discord.Embed(
        title="Credits",
        description="This bot only rewrites links. The embeds come from these projects:",
        color=discord.Color.blurple(),
    )
    for platform, project in CREDITS.items():
        embed.add_field(name=platform, value=project, inline=True)
    await interaction.response.send_message(embed=embed, ephemeral=True)


@tree.command(name="ping", description="Show bot latency and response time")
async def ping_command(interaction: discord.Interaction):
    heartbeat = round(client.latency * 1000)

    await interaction.response.defer(ephemeral=True)
    before = discord.utils.utcnow()

    await interaction.followup.send("Measuring...", ephemeral=True)  #throwaway message

    after = discord.utils.utcnow()
    roundtrip = round((after - before).total_seconds() * 1000)

    embed = discord.Embed(
        title="Pong :3",
        color=discord.Color.teal()
    )
    embed.add_field(name="Heartbeat Latency", value=f"{heartbeat}ms", inline=True)
    embed.add_field(name="Roundtrip Latency", value=f"{roundtrip}ms", inline=True)

    #update the message with real data
    await interaction.edit_original_response(content=None, embed=embed)


#----------------------- startup -----------------------
async def run(config: BotConfig):
    client.config = config
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # no signal handlers on windows event loops; ctrl+c still raises there
            pass

    try:
        async with client:
            runner = asyncio.create_task(client.start(config.discord_token))
            stopper = asyncio.create_task(stop.wait())
            done, _ = await asyncio.wait({runner, stopper}, return_when=asyncio.FIRST_COMPLETED)
            if stopper in done:
                log_info("Shutdown signal received, stopping gracefully.")
                await client.shutdown()
            else:
                stopper.cancel()
            await runner
    finally:
        await client.release()
        log_info("Bot stopped.")


def main():
    if not os.path.exists(CONFIG_PATH):
        write_default_config(CONFIG_PATH)
        print(f"{CONFIG_PATH} not found. A default one was created, please fill it in and restart.")
        exit(1)

    try:
        config = load_config(CONFIG_PATH)
    except ConfigError as e:
        print(f"Invalid configuration: {e}")
        exit(1)

    if not config.discord_token or config.discord_token == DEFAULT_CONFIG["bot"]["discord_token"]:
        print(f"No Discord token set. Fill in discord_token in {CONFIG_PATH} or set DISCORD_TOKEN.")
        exit(1)

    setup_logging(config.logging_dir, config.max_log_lines, config.debug_mode)

    try:
        asyncio.run(run(config))
    except discord.LoginFailure:
        log_error("Invalid Discord token. Check discord_token in config.toml or the DISCORD_TOKEN variable.")
        exit(1)


if __name__ == "__main__":
    main()

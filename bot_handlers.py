"""
Telegram command handlers - /search, /download and package-name lookups
Each update is handled on its own: one status message is edited as the
lookup progresses, and every failure ends up as a chat reply
"""

import html
import os
import re
import sys
import uuid
from typing import Awaitable, Callable, List, Optional, Tuple

import aiofiles
from telegram import Message, Update
from telegram.constants import ChatAction, ParseMode
from telegram.error import TelegramError
from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters

from apkpure_client import APKPureClient, FileTransfer, RetrievalError, SizeLimitExceeded, format_size
from apkpure_parser import UNKNOWN, AppDetails, SearchResult
from bot_config import BotConfig

TELEGRAM_READ_TIMEOUT = 120
TELEGRAM_WRITE_TIMEOUT = 120

SEARCH_USAGE = "Please provide a search query.\nExample: <code>/search whatsapp</code>"
DOWNLOAD_USAGE = "Please provide a package name.\nExample: <code>/download com.whatsapp</code>"

PACKAGE_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*(\.[A-Za-z0-9_]+)+$")

START_TEXT = (
    "🤖 <b>APK Search Bot</b>\n\n"
    "🔍 Search APK files from APKPure\n"
    "📱 Get the APK sent right here\n\n"
    "<b>Commands:</b>\n"
    "/search &lt;app name&gt; - Search for apps\n"
    "/download &lt;package&gt; - Download an app (alias /dl)\n"
    "/help - Show help\n\n"
    "<b>Example:</b>\n"
    "<code>/search whatsapp</code>\n"
    "<code>/download com.whatsapp</code>"
)

HELP_TEXT = (
    "<b>Help Guide:</b>\n\n"
    "1. Search for apps:\n"
    "   <code>/search whatsapp</code>\n"
    "   <code>/search minecraft</code>\n\n"
    "2. Download an app by package name:\n"
    "   <code>/download com.whatsapp</code>\n"
    "   <code>/dl org.telegram.messenger</code>\n\n"
    "3. Or just send a package name like <code>com.whatsapp</code> to check it\n\n"
    "Files larger than {limit} are not sent.\n"
    "<i>Always verify APK files before installing.</i>"
)


class ValidationError(Exception):
    pass


class TransportError(Exception):
    pass


def log(message: str):
    print(f"[Bot] {message}", file=sys.stderr)


def looks_like_package(text: str, min_length: int = 3) -> bool:
    """Free text that might be a package id: not a command, has a dot, not too short"""
    text = (text or "").strip()
    return not text.startswith("/") and "." in text and len(text) > min_length


def is_package_name(text: str) -> bool:
    return bool(PACKAGE_PATTERN.match(text or ""))


def sanitize_filename(title: str, version: str, extension: str = "apk") -> str:
    base = title if not version or version == UNKNOWN else f"{title}_{version}"
    base = re.sub(r"[^A-Za-z0-9]+", "_", base).strip("_") or "app"
    return f"{base}.{extension}"


def detect_extension(transfer: FileTransfer) -> str:
    hint = f"{transfer.url} {transfer.content_type or ''}".lower()
    if "xapk" in hint:
        return "xapk"
    if ".apks" in transfer.url.lower():
        return "apks"
    return "apk"


def render_search_results(query: str, results: List[SearchResult]) -> str:
    noun = "result" if len(results) == 1 else "results"
    lines = [f"📱 <b>Found {len(results)} {noun} for \"{html.escape(query)}\":</b>", ""]
    for index, result in enumerate(results, 1):
        package = html.escape(result.package)
        lines.append(f"{index}. <b>{html.escape(result.title)}</b>")
        lines.append(f"   📦 <code>{package}</code>")
        lines.append(f"   ⬇️ <code>/download {package}</code>")
        lines.append("")
    lines.append("Use <code>/download &lt;package&gt;</code> to get the APK.")
    return "\n".join(lines)


def render_details(package: str, details: AppDetails) -> str:
    title = details.title if details.title != UNKNOWN else package
    return (
        f"✅ <b>{html.escape(title)}</b>\n\n"
        f"📦 Package: <code>{html.escape(package)}</code>\n"
        f"🏷 Version: {html.escape(details.version)}\n"
        f"💾 Size: {html.escape(details.size)}\n"
        f"📅 Updated: {html.escape(details.update_date)}\n"
        f"⬇️ Downloads: {html.escape(details.download_count)}\n\n"
        f"Use <code>/download {html.escape(package)}</code> to get the file."
    )


def render_not_found(package: str, page_url: str) -> str:
    return (
        f"❌ Could not find a download for <code>{html.escape(package)}</code>\n\n"
        f"Try <code>/search</code> first to get the exact package name, "
        f"or visit: {html.escape(page_url)}"
    )


class CommandDispatcher:
    """Maps chat commands onto the catalog client and formats the replies"""

    def __init__(self, client: APKPureClient, config: BotConfig):
        self.client = client
        self.config = config

    def register(self, application: Application):
        application.add_handler(CommandHandler("start", self.start))
        application.add_handler(CommandHandler("help", self.help))
        application.add_handler(CommandHandler("search", self.search))
        application.add_handler(CommandHandler(["download", "dl"], self.download))
        application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self.text))
        application.add_error_handler(self.on_error)

    # ---- transport helpers ----

    async def _reply(self, message: Message, text: str, quote: bool = False) -> Message:
        try:
            return await message.reply_text(
                text,
                parse_mode=ParseMode.HTML,
                disable_web_page_preview=True,
                do_quote=quote,
            )
        except TelegramError as e:
            raise TransportError(f"reply failed: {e}") from e

    async def _edit(self, status: Message, text: str) -> None:
        try:
            await status.edit_text(text, parse_mode=ParseMode.HTML, disable_web_page_preview=True)
        except TelegramError as e:
            raise TransportError(f"edit failed: {e}") from e

    async def _delete(self, status: Message) -> None:
        try:
            await status.delete()
        except TelegramError as e:
            log(f"Could not delete status message: {e}")

    async def _run(self, message: Message, flow: Awaitable[None]) -> None:
        try:
            await flow
        except ValidationError as e:
            try:
                await self._reply(message, str(e), quote=True)
            except TransportError as err:
                log(f"Usage hint not delivered: {err}")
        except TransportError as e:
            log(f"Transport error: {e}")
            await self._notify_failure(message, "❌ Could not deliver the result. Please try again.")
        except Exception as e:
            log(f"Unexpected error: {type(e).__name__}: {e}")
            await self._notify_failure(message, "❌ An error occurred. Please try again.")

    async def _notify_failure(self, message: Message, text: str) -> None:
        try:
            await message.reply_text(text)
        except TelegramError as e:
            log(f"Failure notice not delivered either: {e}")

    @staticmethod
    def _argument(context: ContextTypes.DEFAULT_TYPE, usage: str, first_only: bool = False) -> str:
        args = list(context.args or [])
        if first_only:
            value = args[0].strip() if args else ""
        else:
            value = " ".join(args).strip()
        if not value:
            raise ValidationError(usage)
        return value

    # ---- commands ----

    async def start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message:
            await self._run(message, self._reply(message, START_TEXT))

    async def help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message:
            text = HELP_TEXT.format(limit=format_size(self.config.max_file_size))
            await self._run(message, self._reply(message, text))

    async def search(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message:
            await self._run(message, self._search_flow(message, context))

    async def download(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message:
            await self._run(message, self._download_flow(message, context))

    async def text(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if not message or not message.text:
            return
        if not looks_like_package(message.text, self.config.freeform_min_length):
            return
        package = message.text.strip().split()[0]
        if not is_package_name(package):
            return
        await self._run(message, self._lookup_flow(message, package))

    async def on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        log(f"Unhandled error: {context.error}")
        if isinstance(update, Update) and update.effective_message:
            await self._notify_failure(update.effective_message, "❌ An error occurred. Please try again.")

    # ---- flows ----

    async def _search_flow(self, message: Message, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = self._argument(context, SEARCH_USAGE)
        status = await self._reply(message, f"🔍 Searching for \"{html.escape(query)}\"...")

        try:
            results = await self.client.search(query, limit=self.config.search_limit)
        except RetrievalError as e:
            log(f"Search '{query}' failed: {e}")
            await self._edit(status, f"❌ Search failed. {html.escape(str(e))}")
            return

        if not results:
            await self._edit(
                status,
                f"❌ No results found for \"{html.escape(query)}\"\n\nTry a different search term.",
            )
            return

        await self._edit(status, render_search_results(query, results))

    async def _lookup_flow(self, message: Message, package: str) -> None:
        status = await self._reply(message, f"🔎 Checking <code>{html.escape(package)}</code>...")

        try:
            details = await self.client.fetch_details(package)
        except RetrievalError as e:
            await self._edit(status, f"❌ Lookup failed. {html.escape(str(e))}")
            return

        if not details.found:
            await self._edit(status, render_not_found(package, self.client.details_url(package)))
            return

        await self._edit(status, render_details(package, details))

    async def _download_flow(self, message: Message, context: ContextTypes.DEFAULT_TYPE) -> None:
        package = self._argument(context, DOWNLOAD_USAGE, first_only=True)
        if not is_package_name(package):
            raise ValidationError(DOWNLOAD_USAGE)
        status = await self._reply(message, f"📦 Looking up <code>{html.escape(package)}</code>...")

        try:
            details = await self.client.fetch_details(package)
        except RetrievalError as e:
            await self._edit(status, f"❌ Lookup failed. {html.escape(str(e))}")
            return

        if not details.found:
            await self._edit(status, render_not_found(package, self.client.details_url(package)))
            return

        title = details.title if details.title != UNKNOWN else package
        await self._edit(
            status,
            f"⬇️ Downloading <b>{html.escape(title)}</b> {html.escape(details.version)}...",
        )

        file_path = None
        try:
            transfer = await self.client.fetch_binary(details.download_link, max_bytes=self.config.max_file_size)
            async with transfer:
                extension = detect_extension(transfer)
                file_path, size = await self._save_transfer(transfer, package)
        except SizeLimitExceeded as e:
            size_text = format_size(e.size) if e.declared else f"over {format_size(e.limit)}"
            await self._edit(
                status,
                f"❌ <b>{html.escape(title)}</b> is too large to send.\n\n"
                f"💾 Size: {size_text}\n"
                f"📏 Limit: {format_size(e.limit)}\n\n"
                f"Download it directly: {html.escape(details.download_link)}",
            )
            return
        except RetrievalError as e:
            log(f"Download {package} failed: {e}")
            await self._edit(status, f"❌ Download failed. {html.escape(str(e))}")
            return

        try:
            await self._edit(status, f"📤 Sending <b>{html.escape(title)}</b> ({format_size(size)})...")
            await self._send_file(message, context, file_path, package, title, details, extension, size)
        finally:
            self._remove(file_path)

        await self._delete(status)

    async def _save_transfer(self, transfer: FileTransfer, package: str) -> Tuple[str, int]:
        os.makedirs(self.config.downloads_dir, exist_ok=True)
        safe_name = re.sub(r"[^A-Za-z0-9.]+", "_", package).strip("._") or "app"
        file_path = os.path.join(self.config.downloads_dir, f"{safe_name}_{uuid.uuid4().hex[:8]}.part")

        size = 0
        try:
            async with aiofiles.open(file_path, 'wb') as f:
                async for chunk in transfer.iter_chunks():
                    await f.write(chunk)
                    size += len(chunk)
        except Exception:
            self._remove(file_path)
            raise

        log(f"{package}: {format_size(size)} saved to {os.path.basename(file_path)}")
        return file_path, size

    async def _send_file(
        self,
        message: Message,
        context: ContextTypes.DEFAULT_TYPE,
        file_path: str,
        package: str,
        title: str,
        details: AppDetails,
        extension: str,
        size: int,
    ) -> None:
        filename = sanitize_filename(title, details.version, extension)
        caption = (
            f"📱 <b>{html.escape(title)}</b>\n"
            f"📦 Package: <code>{html.escape(package)}</code>\n"
            f"🏷 Version: {html.escape(details.version)}\n"
            f"💾 Size: {format_size(size)}\n\n"
            "<i>Always scan APK files before installing.</i>"
        )

        try:
            await context.bot.send_chat_action(chat_id=message.chat_id, action=ChatAction.UPLOAD_DOCUMENT)
        except TelegramError as e:
            log(f"Chat action failed: {e}")

        try:
            with open(file_path, 'rb') as f:
                await message.reply_document(
                    document=f,
                    filename=filename,
                    caption=caption,
                    parse_mode=ParseMode.HTML,
                    read_timeout=TELEGRAM_READ_TIMEOUT,
                    write_timeout=TELEGRAM_WRITE_TIMEOUT,
                )
        except TelegramError as e:
            raise TransportError(f"sending {filename} failed: {e}") from e

        log(f"Sent {filename} ({format_size(size)})")

    @staticmethod
    def _remove(file_path: Optional[str]):
        if file_path and os.path.exists(file_path):
            os.remove(file_path)


def build_application(
    config: BotConfig,
    dispatcher: CommandDispatcher,
    webhook: bool = False,
    post_shutdown: Optional[Callable[[Application], Awaitable[None]]] = None,
) -> Application:
    builder = (
        Application.builder()
        .token(config.bot_token)
        .concurrent_updates(True)
        .connect_timeout(30.0)
        .read_timeout(30.0)
        .write_timeout(30.0)
        .pool_timeout(30.0)
    )
    if webhook:
        builder = builder.updater(None)
    if post_shutdown:
        builder = builder.post_shutdown(post_shutdown)

    application = builder.build()
    dispatcher.register(application)
    return application

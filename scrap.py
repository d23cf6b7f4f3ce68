#!/usr/bin/env python3
"""
APK command-line tool - search APKPure, check an app and download its file
through the same client the bot uses
"""
import asyncio
import os
import sys
from typing import Optional

import aiofiles

from apkpure_client import APKPureClient, RetrievalError, SizeLimitExceeded, format_size
from apkpure_parser import UNKNOWN
from bot_handlers import detect_extension, sanitize_filename

USAGE = """Usage:
  python3 scrap.py search <query>
  python3 scrap.py info <package_name>
  python3 scrap.py download <package_name> [output_dir]"""


async def search(query: str, limit: int = 8) -> int:
    async with APKPureClient(debug=False) as client:
        results = await client.search(query, limit=limit)

    if not results:
        print(f"No results for '{query}'")
        return 1

    for index, result in enumerate(results, 1):
        print(f"{index}. {result.title}")
        print(f"   {result.package}  {result.link}")
    return 0


async def info(package_name: str) -> int:
    async with APKPureClient(debug=False) as client:
        details = await client.fetch_details(package_name)

    print(f"Title: {details.title}")
    print(f"Version: {details.version}")
    print(f"Size: {details.size}")
    print(f"Updated: {details.update_date}")
    print(f"Downloads: {details.download_count}")
    print(f"Download page: {details.download_link or 'not found'}")
    return 0 if details.found else 1


async def download_apk(package_name: str, output_dir: Optional[str] = None, max_bytes: Optional[int] = None) -> Optional[str]:
    """
    Download an app file to disk

    Args:
        package_name: Android package name (e.g., com.dts.freefireth)
        output_dir: Output directory for the downloaded file
        max_bytes: Abort when the file is larger than this

    Returns:
        Path to the downloaded file, or None if the app has no download
    """
    if output_dir is None:
        output_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'downloads')
    os.makedirs(output_dir, exist_ok=True)

    async with APKPureClient(debug=True) as client:
        details = await client.fetch_details(package_name)
        if not details.found:
            return None

        title = details.title if details.title != UNKNOWN else package_name
        transfer = await client.fetch_binary(details.download_link, max_bytes=max_bytes)
        async with transfer:
            file_path = os.path.join(output_dir, sanitize_filename(title, details.version, detect_extension(transfer)))
            try:
                async with aiofiles.open(file_path, 'wb') as f:
                    async for chunk in transfer.iter_chunks():
                        await f.write(chunk)
            except Exception:
                if os.path.exists(file_path):
                    os.remove(file_path)
                raise

    print(f"Saved {format_size(os.path.getsize(file_path))} to {file_path}", file=sys.stderr)
    return file_path


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) < 2:
        print(USAGE, file=sys.stderr)
        return 1

    command, target = argv[0], argv[1]
    try:
        if command == "search":
            return asyncio.run(search(" ".join(argv[1:])))
        if command == "info":
            return asyncio.run(info(target))
        if command == "download":
            output_dir = argv[2] if len(argv) > 2 else None
            result = asyncio.run(download_apk(target, output_dir))
            if not result:
                print(f"No download found for {target}", file=sys.stderr)
                return 1
            print(result)
            return 0
    except (RetrievalError, SizeLimitExceeded) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(USAGE, file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())

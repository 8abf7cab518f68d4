"""MailScout - direct mail campaign assistant

Simple CLI for running one chat message through the pipeline.
"""

import argparse
import asyncio
import json
import sys

from mailscout.config import settings
from mailscout.errors import AppError
from mailscout.services.orchestrator import ChatOrchestrator


async def run_chat(message: str, page: int, limit: int) -> int:
    """Handle one message and print the response envelope."""
    print(f"Message: {message}")
    print("-" * 50)

    orchestrator = ChatOrchestrator.from_settings(settings)
    try:
        envelope = await orchestrator.handle(message, [], page=page, limit=limit)
    except AppError as exc:
        print(f"\n[!] {exc.kind} ({exc.status_code}): {exc.message}")
        if exc.details is not None:
            print(f"    Details: {json.dumps(exc.details, default=str)}")
        return 1

    payload = envelope.to_payload()
    if envelope.type == "message":
        print(envelope.response)
        return 0

    pagination = payload.get("pagination")
    if pagination:
        print(
            f"[*] Result page {pagination['page']} of {pagination['total']} results "
            f"(limit {pagination['limit']}, more: {pagination['hasMore']})"
        )
    print(f"{'='*50}")
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 0


def main():
    parser = argparse.ArgumentParser(description="MailScout direct mail campaign assistant")
    parser.add_argument("--message", "-m", required=True, help="Chat message to send")
    parser.add_argument("--page", type=int, default=1, help="Search result page (default: 1)")
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.default_page_limit,
        help="Search results per page",
    )

    args = parser.parse_args()
    if args.page < 1 or not 1 <= args.limit <= settings.max_page_limit:
        parser.error(f"--page must be >= 1 and --limit between 1 and {settings.max_page_limit}")

    sys.exit(asyncio.run(run_chat(args.message, args.page, args.limit)))


if __name__ == "__main__":
    main()

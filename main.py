import argparse
import asyncio
import signal
import time
from colorama import init, Fore, Style

from config import TRACKER_LOG_LEVEL, load_tracker_config
from registry import TrackerStateStore
from token_filters import FilterFlags
from tracker import TokenTracker
from tracker_log import setup_logging

init(autoreset=True)


def format_number(value) -> str:
    if value is None:
        return "N/A"
    for threshold, suffix in ((1e9, "B"), (1e6, "M"), (1e3, "K")):
        if abs(value) >= threshold:
            return f"${value / threshold:.2f}{suffix}"
    return f"${value:,.2f}"


def format_change(value) -> str:
    if value is None:
        return f"{Fore.WHITE}NaN%"
    color = Fore.GREEN if value >= 0 else Fore.RED
    arrow = "↑" if value >= 0 else "↓"
    return f"{color}{arrow} {abs(value):.2f}%{Style.RESET_ALL}"


def format_age(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.0f}s ago"
    if seconds < 3600:
        return f"{seconds / 60:.0f}m ago"
    return f"{seconds / 3600:.1f}h ago"


def print_tokens(tokens, statuses, now=None):
    now = time.time() if now is None else now
    print(f"\n{Fore.CYAN}{'='*60}")
    print(f"{Fore.MAGENTA}[BASE] {len(tokens)} tokens with active trading pairs{Style.RESET_ALL}")
    print(f"{Fore.CYAN}{'='*60}")

    if not tokens:
        print(f"{Fore.YELLOW}Scanning for new tokens...")
        return

    for token in tokens:
        status = statuses.get(token.key)
        if status is None:
            badge = f"{Fore.WHITE}Unverified"
        else:
            tags = []
            if status.is_automated_creation:
                tags.append("Created by AI")
            if status.platform_tag:
                tags.append(status.platform_tag)
            if status.is_curated_trusted:
                tags.append("Trusted")
            if status.is_community_voted:
                tags.append("Popular Vote")
            badge = f"{Fore.GREEN}{', '.join(tags)}"

        print(f"{Fore.YELLOW}{token.name or 'Unknown Token'} {Fore.WHITE}({token.symbol or 'Unknown'})  {token.address}")
        print(f"   Created {format_age(token.age_seconds(now))} | MCap {format_number(token.market_cap)} | "
              f"5m {format_change(token.price_change_m5)} | 1h {format_change(token.price_change_h1)} | {badge}")


async def print_ranked(tracker: TokenTracker, flags: FilterFlags):
    tokens = await tracker.ranked_tokens(flags)
    statuses = await tracker.classifier.classify_many(t.address for t in tokens)
    print_tokens(tokens, statuses, now=tracker.clock())


async def main():
    parser = argparse.ArgumentParser(description="Base New Token Tracker")
    parser.add_argument("--config", default=None, help="Path to tracker.yaml")
    parser.add_argument("--state", default=None, help="Path to the persisted state file")
    parser.add_argument("--once", action="store_true",
                        help="Run one discovery pass and one refresh, print the list and exit")
    parser.add_argument("--refresh", action="store_true",
                        help="Clear persisted state and caches before starting")
    parser.add_argument("--hide-community", action="store_true", help="Hide community-voted tokens")
    parser.add_argument("--hide-no-mcap", action="store_true", help="Hide tokens without a market cap")
    parser.add_argument("--hide-inactive", action="store_true", help="Hide tokens with no 1h price change")
    parser.add_argument("--hide-old", action="store_true", help="Hide tokens older than 24h")
    parser.add_argument("--hide-unverified", action="store_true", help="Hide unverified tokens")
    parser.add_argument("--print-interval", type=float, default=30.0,
                        help="Seconds between list printouts")
    parser.add_argument("--log-level", default=TRACKER_LOG_LEVEL)
    args = parser.parse_args()

    setup_logging(args.log_level)
    config = load_tracker_config(args.config)

    defaults = FilterFlags.from_config(config.get('filters', {}))
    flags = FilterFlags(
        hide_community_voted=args.hide_community or defaults.hide_community_voted,
        hide_no_market_cap=args.hide_no_mcap or defaults.hide_no_market_cap,
        hide_inactive_pairs=args.hide_inactive or defaults.hide_inactive_pairs,
        hide_older_than_24h=args.hide_old or defaults.hide_older_than_24h,
        hide_unverified=args.hide_unverified or defaults.hide_unverified,
    )

    persistence = config.get('persistence', {})
    store = TrackerStateStore(args.state or persistence.get('path', 'data/tracker_state.json'),
                              tokens_namespace=persistence.get('namespace', 'baseTokens'))
    tracker = TokenTracker(config, store=store)
    tracker.filter_flags = flags

    if not tracker.adapter.connect():
        print(f"{Fore.RED}Could not connect to the Base RPC. Check BASE_RPC_URL.")
        return

    if args.refresh:
        store.clear()
    tracker.restore()

    try:
        if args.once:
            await tracker.run_once()
            await print_ranked(tracker, flags)
            return

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows
                pass

        runner = asyncio.create_task(tracker.run(stop_event), name="tracker")
        print(f"{Fore.GREEN}Tracking new Base tokens. Ctrl+C to stop.")
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=args.print_interval)
            except asyncio.TimeoutError:
                await print_ranked(tracker, flags)
        await runner
    finally:
        await tracker.close()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()

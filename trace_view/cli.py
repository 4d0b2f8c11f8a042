import argparse
import json
import subprocess
import sys
import threading
from pathlib import Path

from . import get_version
from .config import load_config
from .core.aggregator import INITIAL_STATE, reduce_all
from .core.models import is_terminal_trace_status
from .core.projection import GraphProjector, format_duration, to_dot
from .utils.errors import TraceLoadError, make_safe_error
from .utils.logging import set_level


def _load_events(path):
    with Path(path).open("r", encoding="utf-8") as f:
        payload = json.load(f)
    if isinstance(payload, dict):
        return payload.get("events") or []
    return list(payload)


def summarize(state):
    """Plain-text summary: trace status, then one line per node and memory space."""
    lines = [f"trace status: {state.status or 'pending'}"]
    if state.load_error:
        lines.append(f"load error: {state.load_error}")
    for node in state.nodes.values():
        duration = format_duration(node.duration)
        marker = " (placeholder)" if node.placeholder else ""
        lines.append(f"  {node.id}{marker} [{node.status}] {duration} logs={len(node.logs)}")
    for space in state.spaces.values():
        lines.append(f"  memory {space.id} ({space.type}) items={space.count}")
    return "\n".join(lines)


def _replay(args, cfg):
    from .stream.snapshot import SnapshotLoader, history_actions

    if args.trace_id:
        try:
            history = SnapshotLoader.from_config(cfg).fetch_events(args.trace_id)
        except TraceLoadError as exc:
            safe = make_safe_error(exc, trace_id=args.trace_id)
            print(f"{safe.user_message} (support id {safe.support_id})", file=sys.stderr)
            return 1
        events = history.events
    elif args.file:
        events = _load_events(args.file)
    else:
        print("replay needs FILE or --trace-id", file=sys.stderr)
        return 2
    state = reduce_all(INITIAL_STATE, history_actions(events, args.trace_id))
    print(summarize(state))
    if args.dot:
        print(to_dot(GraphProjector.from_config(cfg).project(state)))
    return 0


def _watch(args, cfg):
    from .session import TraceSession

    done = threading.Event()
    last = {"status": None, "nodes": None}

    def on_change(state):
        key = (state.status, tuple((n.id, n.status) for n in state.nodes.values()))
        if key != (last["status"], last["nodes"]):
            last["status"], last["nodes"] = key
            print(summarize(state), flush=True)
        if state.load_error or is_terminal_trace_status(state.status):
            done.set()

    with TraceSession(cfg) as session:
        session.subscribe(on_change)
        session.open(args.trace_id)
        done.wait(args.timeout)
        state = session.state
    if args.dot and state.nodes:
        print(to_dot(GraphProjector.from_config(cfg).project(state)))
    return 1 if state.load_error else 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog="trace-view")
    parser.add_argument("--version", action="store_true", help="Print package version and exit")
    parser.add_argument("--config", help="YAML file overriding the packaged defaults")
    parser.add_argument("--log-level", help="Logging level for the trace_view logger")
    sub = parser.add_subparsers(dest="cmd")

    sub.add_parser("version", help="Print package version")

    replay_p = sub.add_parser("replay", help="Rebuild a trace graph from recorded events")
    replay_p.add_argument("file", nargs="?", help="JSON list of events, or an object with an 'events' list")
    replay_p.add_argument("--trace-id", help="Fetch the recorded events from the trace service instead")
    replay_p.add_argument("--dot", action="store_true", help="Also print the positioned graph as DOT")

    watch_p = sub.add_parser("watch", help="Follow a live trace until it finishes")
    watch_p.add_argument("trace_id", help="Trace id")
    watch_p.add_argument("--timeout", type=float, default=None, help="Stop waiting after this many seconds")
    watch_p.add_argument("--dot", action="store_true", help="Print the final graph as DOT")

    sub.add_parser("app", help="Launch Streamlit app")

    args = parser.parse_args(argv)

    if args.version or args.cmd == "version":
        print(get_version())
        return 0
    cfg = load_config(args.config)
    set_level(args.log_level or (cfg.get("logging") or {}).get("level", "INFO"))
    if args.cmd == "replay":
        return _replay(args, cfg)
    if args.cmd == "watch":
        return _watch(args, cfg)
    if args.cmd == "app":
        app = Path(__file__).resolve().parent.parent / "streamlit_app.py"
        return subprocess.call([sys.executable, "-m", "streamlit", "run", str(app)])

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

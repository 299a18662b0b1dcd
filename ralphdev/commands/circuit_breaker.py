"""
ralph-dev circuit-breaker (alias cb) - inspect and drive the healing breaker.

fail/success are meant for the driver's healing loop: each call records one
outcome against the persisted breaker state.
"""

from datetime import datetime, timezone

from ralphdev.commands.output import emit
from ralphdev.context import build_breaker
from ralphdev.lib import clock
from ralphdev.lib.circuit_breaker import CircuitState


def _fmt_ms(value) -> str:
    if value is None:
        return "-"
    return clock.to_iso(datetime.fromtimestamp(value / 1000, tz=timezone.utc))


def _print_metrics(data: dict) -> None:
    print("Circuit Breaker Status:")
    print(f"  State:         {data['state']}")
    print(f"  Failure count: {data['failureCount']} / {data['failureThreshold']}")
    print(f"  Success count: {data['successCount']}")
    print(f"  Last failure:  {_fmt_ms(data['lastFailureTime'])}")
    print(f"  Last reset:    {_fmt_ms(data['lastResetTime'])}")
    if data["state"] == CircuitState.OPEN.value:
        print(f"\n  Circuit is OPEN: healing is refused for another {data['retryAfterMs']}ms.")
        print("  Run 'ralph-dev circuit-breaker reset' to close it.")


def cmd_status(args, ctx) -> int:
    breaker = ctx.breaker
    data = {**breaker.metrics(), "retryAfterMs": breaker.retry_after_ms()}
    return emit(args, data, _print_metrics)


def cmd_reset(args, ctx) -> int:
    previous = ctx.healing.reset_circuit()
    data = {
        "previousState": previous.value,
        "newState": ctx.breaker.state.value,
        "wasReset": previous != CircuitState.CLOSED,
    }

    def human(_):
        if data["wasReset"]:
            print(f"Circuit breaker reset ({data['previousState']} -> {data['newState']})")
        else:
            print("Circuit breaker was already CLOSED")

    return emit(args, data, human)


def cmd_fail(args, ctx) -> int:
    with ctx.lock():
        breaker = build_breaker(ctx.config, ctx.fs, failure_threshold=args.threshold)
        breaker.allow_request()
        state = breaker.record_failure()
    data = {
        "state": state.value,
        "failureCount": breaker.failure_count,
        "threshold": breaker.failure_threshold,
        "opened": state == CircuitState.OPEN,
    }
    return emit(args, data, lambda _: print(
        f"Failure recorded ({data['failureCount']}/{data['threshold']}), circuit {data['state']}"))


def cmd_success(args, ctx) -> int:
    with ctx.lock():
        breaker = build_breaker(ctx.config, ctx.fs, success_threshold=args.success_threshold)
        breaker.allow_request()
        state = breaker.record_success()
    data = {
        "state": state.value,
        "successCount": breaker.success_count,
        "successThreshold": breaker.success_threshold,
    }
    return emit(args, data, lambda _: print(f"Success recorded, circuit {data['state']}"))


def register(subparsers) -> None:
    p_cb = subparsers.add_parser("circuit-breaker", aliases=["cb"], help="Manage the healing circuit breaker")
    sub = p_cb.add_subparsers(dest="cb_cmd", required=True)

    p = sub.add_parser("status", help="Show breaker state")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("reset", help="Force the breaker CLOSED")
    p.set_defaults(func=cmd_reset)

    p = sub.add_parser("fail", help="Record a healing failure")
    p.add_argument("--threshold", type=int, help="Failures before opening (default from config)")
    p.set_defaults(func=cmd_fail)

    p = sub.add_parser("success", help="Record a healing success")
    p.add_argument("--success-threshold", type=int, help="HALF_OPEN successes before closing")
    p.set_defaults(func=cmd_success)

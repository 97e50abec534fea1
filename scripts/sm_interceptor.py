"""Command-line entry point for the security-manager interception service.

Subcommands:
    run           start one receive loop per interception application plus the status API
    check-config  load settings and applications and print the resolved endpoints
    verify-audit  check HMAC signatures in the intercept audit trail
"""
from __future__ import annotations
import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from interceptor.config import load_settings
from interceptor.config.applications import GatewaySettings, YamlConfigSource
from interceptor.core.exceptions import ConfigError
from interceptor.core.registry import EndpointConfig
from scripts import audit

logger = logging.getLogger("interceptor.cli")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
    )


def _serve_status_api(service, host: str, port: int) -> threading.Thread:
    from interceptor.flask_app import create_app

    app = create_app(service)
    thread = threading.Thread(
        target=app.run,
        kwargs={"host": host, "port": port, "use_reloader": False, "threaded": True},
        name="status-api",
        daemon=True,
    )
    thread.start()
    logger.info(f"Status API listening on {host}:{port}")
    return thread


def cmd_run(args) -> int:
    from interceptor.core.worker import InterceptorService

    cfg = load_settings()
    _configure_logging(args.log_level or cfg.log_level)
    if args.applications:
        cfg.applications_file = args.applications

    service = InterceptorService.from_settings(cfg)
    if not service.workers:
        print("[run] No application has interception enabled", file=sys.stderr)
        return 1

    stop = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}; stopping interceptor workers")
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    service.start()
    if cfg.health_port > 0:
        _serve_status_api(service, cfg.health_host, cfg.health_port)

    stop.wait()
    service.stop()
    return 0


def cmd_check_config(args) -> int:
    cfg = load_settings()
    path = args.applications or cfg.applications_file
    source = YamlConfigSource.from_file(path)

    interception = source.interception_applications()
    print(f"[check-config] {len(source.applications())} application(s), {len(interception)} with interception")
    for app in source.applications():
        endpoint = EndpointConfig.from_application(app)
        line = (
            f"  - {app.name}: {endpoint.key.mscs_type}/{endpoint.key.mscs_name} "
            f"cluster={app.cluster or '-'} encoding={endpoint.encoding} "
            f"groups={endpoint.group_attribute or '-'}"
        )
        if app.interception:
            gateway = GatewaySettings.from_application(app)
            tls = "tls" if gateway.tls_enabled else "plain"
            line += f" gateway={gateway.host}:{gateway.port} ({tls})"
        print(line)
    return 0


def cmd_verify_audit(args) -> int:
    if args.audit_dir:
        audit.configure(args.audit_dir)
    else:
        audit.configure(load_settings().audit_log_dir)
    total, valid = audit.verify_audit_log()
    print(f"Audit log: {valid}/{total} events with valid signatures")
    return 0 if total == valid else 1


def main(argv: list[str] | None = None) -> int:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="Security-manager interception service")
    sub = parser.add_subparsers(dest="cmd")

    sr = sub.add_parser("run", help="Run the interception service")
    sr.add_argument("--applications", help="Applications YAML file (overrides SM_APPLICATIONS_FILE)")
    sr.add_argument("--log-level", help="Logging level (overrides LOG_LEVEL)")

    sc = sub.add_parser("check-config", help="Validate configuration and list endpoints")
    sc.add_argument("--applications", help="Applications YAML file (overrides SM_APPLICATIONS_FILE)")

    sv = sub.add_parser("verify-audit", help="Verify audit trail signatures")
    sv.add_argument("--audit-dir", help="Audit directory (overrides AUDIT_LOG_DIR)")

    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return 2

    commands = {
        "run": cmd_run,
        "check-config": cmd_check_config,
        "verify-audit": cmd_verify_audit,
    }
    try:
        return commands[args.cmd](args)
    except ConfigError as e:
        print(f"[{args.cmd}] Configuration error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

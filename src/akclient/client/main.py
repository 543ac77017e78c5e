import argparse
import getpass
import sys
from typing import List, Optional

from akclient.core.config import configure_logging
from akclient.core.errors import APIError
from akclient.client.app import ClientApp
from akclient.client.session import AuthFlowState


def _find_server(app: ClientApp, key: str):
    return app.profiles.get(key) or app.profiles.get_profile_by_name(key)


def cmd_servers(app: ClientApp, args) -> int:
    if args.action == "list":
        active_id = app.profiles.active_server_id
        for p in app.profiles.servers:
            marker = "*" if p.id == active_id else " "
            print(f"{marker} {p.name}\t{p.url}\t{p.id}")
        return 0

    if args.action == "add":
        if not args.skip_probe and not app.transport.test_connection(args.url):
            print(f"无法连接到 {args.url} (使用 --skip-probe 强制保存)", file=sys.stderr)
            return 1
        profile = app.profiles.add(args.name, args.url)
        print(f"已添加 {profile.name} ({profile.url})")
        return 0

    target = _find_server(app, args.server)
    if target is None:
        print(f"找不到服务器: {args.server}", file=sys.stderr)
        return 1

    if args.action == "remove":
        app.profiles.remove(target)
        print(f"已删除 {target.name}")
        return 0

    # use
    reachable = app.switch_server(target)
    print(f"当前服务器: {target.name} ({target.url})" + ("" if reachable else " [不可达]"))
    return 0


def cmd_probe(app: ClientApp, args) -> int:
    ok = app.transport.test_connection(args.url)
    print("OK" if ok else "FAILED")
    return 0 if ok else 1


def cmd_login(app: ClientApp, args) -> int:
    if not app.transport.is_configured:
        print("尚未配置服务器, 请先执行 servers add", file=sys.stderr)
        return 1

    username = args.username or input("Username: ")
    password = getpass.getpass("Password: ")
    auth = app.auth
    auth.login(username, password)

    while auth.state is AuthFlowState.AWAITING_TOTP:
        if auth.error_message:
            print(auth.error_message, file=sys.stderr)
        code = input("TOTP code (empty to cancel): ").strip()
        if not code:
            auth.logout()
            return 1
        auth.verify_totp(code)

    if not auth.is_authenticated:
        print(f"登录失败: {auth.error_message}", file=sys.stderr)
        return 1

    identity = auth.identity
    if identity:
        role = "admin" if identity.is_admin else "user"
        print(f"Logged in as {identity.username} ({role})")
    else:
        print("Logged in")
    if auth.must_change_password:
        print("服务器要求修改密码")
    return 0


def cmd_setup_status(app: ClientApp, args) -> int:
    try:
        status = app.gateway.setup_status()
    except APIError as e:
        print(f"错误: {e}", file=sys.stderr)
        return 1
    print("setup required" if status.setup_required else "ready")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="akclient",
        description="Artifact Keeper client: manage servers and sign in",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default from settings)")
    sub = parser.add_subparsers(dest="command", required=True)

    servers = sub.add_parser("servers", help="Manage saved servers")
    servers_sub = servers.add_subparsers(dest="action", required=True)
    servers_sub.add_parser("list", help="List saved servers")
    add = servers_sub.add_parser("add", help="Save a new server")
    add.add_argument("name")
    add.add_argument("url")
    add.add_argument("--skip-probe", action="store_true", help="Save without testing the connection")
    for action in ("remove", "use"):
        p = servers_sub.add_parser(action, help=f"{action.capitalize()} a saved server")
        p.add_argument("server", help="Server id or name")
    servers.set_defaults(func=cmd_servers)

    probe = sub.add_parser("probe", help="Check that a server answers /health")
    probe.add_argument("url")
    probe.set_defaults(func=cmd_probe)

    login = sub.add_parser("login", help="Sign in to the active server")
    login.add_argument("--username", "-u")
    login.set_defaults(func=cmd_login)

    setup = sub.add_parser("setup-status", help="Ask the active server whether first-run setup is pending")
    setup.set_defaults(func=cmd_setup_status)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    app = ClientApp()
    return args.func(app, args)


if __name__ == "__main__":
    sys.exit(main())

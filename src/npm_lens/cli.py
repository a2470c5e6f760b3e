from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from npm_lens.config import AppConfig, _positive_float, load_config
from npm_lens.registry_client import RegistryAuth


def build_parser() -> argparse.ArgumentParser:
    """
    构建 npm-lens 的命令行参数解析器。
    """
    parser = argparse.ArgumentParser(prog="npm-lens")
    parser.add_argument(
        "--version",
        action="store_true",
        help="输出版本号并退出",
    )
    parser.add_argument("--config", help="配置文件路径（.toml 或 .yaml）")
    parser.add_argument(
        "--manifest",
        default="package.json",
        help="package.json 路径（默认：package.json）",
    )
    parser.add_argument("--registry-url", help="npm registry 地址")
    parser.add_argument("--token", help="私有 registry Bearer Token（谨慎使用）")
    parser.add_argument("--exclude", action="append", default=[], help="排除不检查的包名（可重复）")
    parser.add_argument("--max-concurrency", type=int, help="最大并发请求数")
    parser.add_argument("--timeout", type=float, help="单次 registry 请求超时秒数")
    parser.add_argument(
        "--dev",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="是否检查 devDependencies",
    )
    parser.add_argument(
        "--beta",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="是否同时参考 beta 渠道",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")

    subparsers = parser.add_subparsers(dest="command")

    check = subparsers.add_parser("check", help="检查依赖版本并输出报告")
    check.add_argument("--format", choices=["table", "json", "md"], default="table", help="输出格式")
    check.add_argument("--output", help="输出到文件（默认 stdout）")

    watch = subparsers.add_parser("watch", help="监听项目的 package.json 并在变更后重新检查")
    watch.add_argument("projects", nargs="*", help="项目目录（默认当前目录）")

    return parser


def configure_logging(verbose: bool) -> None:
    """
    使用 rich 将日志输出到 stderr。
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _merge_cli_overrides(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    """
    将 CLI 参数覆盖合并到 AppConfig。
    """
    registry = cfg.registry
    if args.registry_url:
        registry = replace(registry, registry_url=args.registry_url)
    if args.token:
        registry = replace(registry, auth=RegistryAuth(bearer_token=args.token))
    if args.timeout is not None:
        registry = replace(registry, timeout_s=_positive_float(args.timeout, registry.timeout_s))

    settings = cfg.settings
    if args.dev is not None:
        settings = replace(settings, check_dev_dependencies=bool(args.dev))
    if args.beta is not None:
        settings = replace(settings, use_beta_channel=bool(args.beta))

    exclude = tuple([*cfg.exclude, *(args.exclude or [])])
    max_concurrency = cfg.max_concurrency if args.max_concurrency is None else max(1, int(args.max_concurrency))

    return replace(
        cfg,
        settings=settings,
        registry=registry,
        max_concurrency=max_concurrency,
        exclude=exclude,
    )


def main(argv: list[str] | None = None) -> int:
    """
    npm-lens 命令行入口。
    """
    args = build_parser().parse_args(argv)

    if args.version:
        from npm_lens import __version__

        print(__version__)
        return 0

    configure_logging(bool(args.verbose))
    cfg = _merge_cli_overrides(load_config(args.config), args)
    manifest_path = Path(args.manifest)

    if args.command is None:
        try:
            from npm_lens.tui import run_tui
        except Exception:
            print("npm-lens: TUI 依赖未安装或启动失败，请使用子命令。", file=sys.stderr)
            return 2
        return run_tui(manifest_path, config=cfg)

    if args.command == "check":
        from npm_lens.app import run_check
        from npm_lens.formatters import print_notification, print_table, render_json, render_markdown
        from npm_lens.notifications import build_notification

        try:
            result = run_check(manifest_path, config=cfg)
        except Exception as exc:
            print(f"npm-lens: 检查失败：{exc}", file=sys.stderr)
            return 1
        output_path = getattr(args, "output", None)
        if args.format == "table":
            notification = build_notification(result, cfg.settings)
            if output_path:
                with open(output_path, "w", encoding="utf-8") as f:
                    print_table(result, file=f)
                    print_notification(notification, file=f)
            else:
                print_table(result)
                print_notification(notification)
            return 0
        if args.format == "json":
            text = render_json(result)
        else:
            text = render_markdown(result)
        if output_path:
            Path(output_path).write_text(text, encoding="utf-8")
        else:
            print(text)
        return 0

    if args.command == "watch":
        from npm_lens.app import watch_projects
        from npm_lens.formatters import print_notification
        from npm_lens.notifications import build_notification

        projects = [Path(p) for p in args.projects] or [Path.cwd()]

        def on_result(result, settings) -> None:
            print_notification(build_notification(result, settings))

        try:
            rc = asyncio.run(watch_projects(projects, config=cfg, on_result=on_result))
        except KeyboardInterrupt:
            return 0
        if rc != 0:
            print("npm-lens: 指定目录中没有找到 package.json。", file=sys.stderr)
        return rc

    print(f"npm-lens: 未知子命令 {args.command!r}", file=sys.stderr)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())

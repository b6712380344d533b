"""Command line interface for the bundler tool."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable, List
import sys

from core.command_runner import RecordingCommandRunner, SubprocessCommandRunner

from .build import BuildReport, ModuleStatus, PackagingEngine
from .config_loader import ConfigurationStore
from .console import Console
from .errors import BundlerError
from .repositories import RepositoryResolver
from .shade import ShadeCoordinator


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="bundler", description="Shaded-jar packaging and publication for sibling modules")
    parser.add_argument("--workspace", type=Path, help="Directory holding config/ (default: current directory)")
    parser.add_argument("--log", choices=list(Console.LEVELS), help="Console log level (overrides [global] log_level)")
    parser.add_argument("--verbose", action="store_true", help="Shortcut for --log debug")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List configured modules")
    subparsers.add_parser("repositories", help="Print the ordered repository URIs")

    validate_parser = subparsers.add_parser("validate", help="Validate configuration files")
    validate_parser.add_argument("--module", help="Validate a single module by name")

    package_parser = subparsers.add_parser("package", help="Build shaded, sources and javadoc jars")
    package_parser.add_argument("modules", nargs="*", help="Modules to package; omit for all")
    package_parser.add_argument("--dry-run", action="store_true", help="Print the plan without writing files")

    publish_parser = subparsers.add_parser("publish", help="Package and publish modules")
    publish_parser.add_argument("modules", nargs="*", help="Modules to publish; omit for all")
    publish_parser.add_argument("--dry-run", action="store_true", help="Print the plan without writing files")
    publish_parser.add_argument("--no-remote", action="store_true", help="Only install into the local repository")

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    workspace = (args.workspace or Path.cwd()).resolve()

    try:
        store = ConfigurationStore.from_directory(workspace)
    except (BundlerError, FileNotFoundError, ValueError, TypeError) as exc:
        print(f"Error: {exc}")
        return 1

    level = args.log or ("debug" if args.verbose else store.global_config.log_level)
    try:
        console = Console(
            level=level,
            dry_run=bool(getattr(args, "dry_run", False)),
            log_file=store.global_config.log_file,
        )
    except ValueError as exc:
        print(f"Error: {exc}")
        return 1

    if args.command == "list":
        return _handle_list(store)
    if args.command == "repositories":
        return _handle_repositories(store)
    if args.command == "validate":
        return _handle_validate(args, store)
    if args.command in {"package", "publish"}:
        return _handle_build(args, store, console, publish=args.command == "publish")
    raise ValueError(f"Unknown command: {args.command}")


def _handle_list(store: ConfigurationStore) -> int:
    shader = ShadeCoordinator()
    headers = ["Module", "Group", "Version", "Archive", "Depends on"]
    rows: List[List[str]] = []
    for name in sorted(store.list_modules()):
        definition = store.get_module(name)
        module = definition.module
        rows.append(
            [
                module.name,
                module.group,
                module.version,
                shader.compute_archive_name(module),
                ", ".join(dep.name for dep in definition.dependencies) or "-",
            ]
        )
    for stem in sorted(store.invalid_modules):
        rows.append([stem, "-", "-", "<invalid>", "-"])

    if not rows:
        print("No modules found")
        return 0

    widths = [max(len(header), *(len(row[index]) for row in rows)) for index, header in enumerate(headers)]

    def _format(row: List[str]) -> str:
        return "  ".join(value.ljust(widths[index]) for index, value in enumerate(row)).rstrip()

    print(_format(headers))
    print("  ".join("-" * width for width in widths))
    for row in rows:
        print(_format(row))
    return 0


def _handle_repositories(store: ConfigurationStore) -> int:
    try:
        resolver = RepositoryResolver(store.global_config.repositories)
    except BundlerError as exc:
        print(f"Error: {exc}")
        return 1
    for uri in resolver.resolve_repositories():
        print(uri)
    return 0


def _handle_validate(args: Namespace, store: ConfigurationStore) -> int:
    errors: List[tuple[str, str]] = []
    try:
        RepositoryResolver(store.global_config.repositories)
    except BundlerError as exc:
        errors.append(("global", str(exc)))

    names = [args.module] if args.module else sorted(store.list_modules())
    if not args.module:
        errors.extend((stem, str(exc)) for stem, exc in sorted(store.invalid_modules.items()))
    elif args.module in store.invalid_modules:
        errors.append((args.module, str(store.invalid_modules[args.module])))
        names = []

    shader = ShadeCoordinator()
    for name in names:
        try:
            definition = store.get_module(name)
            shader.compute_archive_name(definition.module)
            shader.relocation_rules(definition)
            store.resolve_dependency_chain(name)
        except KeyError as exc:
            errors.append((name, exc.args[0] if exc.args else str(exc)))
        except BundlerError as exc:
            errors.append((name, str(exc)))

    if errors:
        print("Validation failed:")
        for module_name, message in errors:
            print(f"  [{module_name}] {message}")
        return 1
    print("Validation successful")
    return 0


def _handle_build(args: Namespace, store: ConfigurationStore, console: Console, *, publish: bool) -> int:
    runner: SubprocessCommandRunner | RecordingCommandRunner
    if args.dry_run:
        runner = RecordingCommandRunner()
    else:
        runner = SubprocessCommandRunner()

    try:
        engine = PackagingEngine(
            store=store,
            console=console,
            command_runner=runner,
            include_remote=not getattr(args, "no_remote", False),
        )
        report = engine.run(args.modules or None, publish=publish)
    except BundlerError as exc:
        print(f"Error: {exc}")
        return 1

    if args.dry_run and isinstance(runner, RecordingCommandRunner):
        for line in runner.iter_formatted(workspace=store.root):
            print(line)

    _print_summary(report)
    return 0 if report.ok else 1


def _print_summary(report: BuildReport) -> None:
    for module_report in report.modules:
        if module_report.status is ModuleStatus.FAILED:
            print(f"{module_report.name}: failed: {module_report.error}")
            continue
        detail = module_report.archive_name or ""
        if module_report.publication_id:
            detail = f"{detail} ({module_report.publication_id})"
        print(f"{module_report.name}: {module_report.status.value} {detail}".rstrip())
    if report.bundle is not None:
        print(f"bundle: {report.bundle}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

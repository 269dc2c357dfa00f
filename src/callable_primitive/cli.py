"""
Callable Primitive command line

Usage:
    callable-primitive define square '|i| i ** 2'
    callable-primitive call square 3            # 9
    callable-primitive update square '|i| i ** 3'
    callable-primitive history square
    callable-primitive rollback square 1
    callable-primitive show square --version 1
    callable-primitive logs square --level ERROR
    callable-primitive export square > square.json
    callable-primitive import cube square.json
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, List, Optional

from .config import get_config
from .core.compiler import CompileError
from .core.deferred import SerialFormError
from .core.version_manager import InvalidCallableIdError, VersionError
from .runtime.callable_runtime import CallableNotFoundError, CallableRuntime


def parse_arg(text: str) -> Any:
    """Parse a CLI argument as a JSON literal, falling back to a string"""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def format_result(value: Any) -> str:
    """Render a result as JSON when possible, else repr"""
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return repr(value)


def cmd_define(runtime: CallableRuntime, args) -> None:
    managed = runtime.define(args.id, args.source, author=args.author, message=args.message)
    history = managed.get_version_history(limit=1)
    print(f"✓ {args.id} defined (version {history[0]['version_id']})")


def cmd_call(runtime: CallableRuntime, args) -> None:
    managed = runtime.load(args.id)
    result = managed.call(*[parse_arg(a) for a in args.args])
    print(format_result(result))


def cmd_update(runtime: CallableRuntime, args) -> None:
    managed = runtime.load(args.id)
    version_id = managed.update_source(args.source, author=args.author, message=args.message)
    print(f"✓ {args.id} updated (version {version_id})")


def cmd_show(runtime: CallableRuntime, args) -> None:
    managed = runtime.load(args.id)
    if args.version is None:
        print(managed.source)
        return

    version = managed.get_version(args.version)
    if version is None:
        raise VersionError(f"Version {args.version} not found for callable {args.id}")
    print(version['source'])


def cmd_history(runtime: CallableRuntime, args) -> None:
    managed = runtime.load(args.id)
    for version in managed.get_version_history(limit=args.limit):
        print(f"v{version['version_id']}\t{version['timestamp']}\t{version['author']}\t{version['message']}")


def cmd_rollback(runtime: CallableRuntime, args) -> None:
    managed = runtime.load(args.id)
    message = args.message or f'Rollback to version {args.version}'
    new_version_id = managed.rollback_to_version(args.version, author=args.author, message=message)
    print(f"✓ {args.id} rolled back to version {args.version} (now version {new_version_id})")


def cmd_logs(runtime: CallableRuntime, args) -> None:
    managed = runtime.load(args.id)
    for entry in managed.get_logs(level=args.level, limit=args.limit):
        print(f"{entry['timestamp']}\t{entry['level']}\t{entry['message']}")


def cmd_export(runtime: CallableRuntime, args) -> None:
    managed = runtime.load(args.id)
    print(json.dumps(managed.serialize()))


def cmd_import(runtime: CallableRuntime, args) -> None:
    text = Path(args.file).read_text(encoding='utf-8')
    try:
        form = json.loads(text)
    except json.JSONDecodeError as e:
        raise SerialFormError(f'{args.file} is not valid JSON: {e}') from e

    runtime.import_callable(args.id, form, author=args.author, message=args.message or 'Imported')
    print(f"✓ {args.id} imported from {args.file}")


def build_parser() -> argparse.ArgumentParser:
    config = get_config()

    parser = argparse.ArgumentParser(
        prog='callable-primitive',
        description='Define, call and version serializable callables',
    )
    parser.add_argument(
        '--data-dir',
        default=str(config.data_dir),
        help=f'Data directory (default: {config.data_dir})',
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    define = subparsers.add_parser('define', help='Define a callable from source text')
    define.add_argument('id')
    define.add_argument('source')
    define.add_argument('--message', default='Initial version')
    define.set_defaults(func=cmd_define)

    call = subparsers.add_parser('call', help='Call a callable (arguments are JSON literals)')
    call.add_argument('id')
    call.add_argument('args', nargs='*')
    call.set_defaults(func=cmd_call)

    update = subparsers.add_parser('update', help='Replace the source (new version)')
    update.add_argument('id')
    update.add_argument('source')
    update.add_argument('--message', default='Source updated')
    update.set_defaults(func=cmd_update)

    show = subparsers.add_parser('show', help='Print the source')
    show.add_argument('id')
    show.add_argument('--version', type=int, default=None)
    show.set_defaults(func=cmd_show)

    history = subparsers.add_parser('history', help='List versions, most recent first')
    history.add_argument('id')
    history.add_argument('--limit', type=int, default=None)
    history.set_defaults(func=cmd_history)

    rollback = subparsers.add_parser('rollback', help='Roll back to a version (new version)')
    rollback.add_argument('id')
    rollback.add_argument('version', type=int)
    rollback.add_argument('--message', default=None)
    rollback.set_defaults(func=cmd_rollback)

    logs = subparsers.add_parser('logs', help='Show the callable\'s own logs')
    logs.add_argument('id')
    logs.add_argument('--level', default=None)
    logs.add_argument('--limit', type=int, default=None)
    logs.set_defaults(func=cmd_logs)

    export = subparsers.add_parser('export', help='Print the serial form as JSON')
    export.add_argument('id')
    export.set_defaults(func=cmd_export)

    import_ = subparsers.add_parser('import', help='Define a callable from a serial form file')
    import_.add_argument('id')
    import_.add_argument('file')
    import_.add_argument('--message', default=None)
    import_.set_defaults(func=cmd_import)

    for sub in (define, update, rollback, import_):
        sub.add_argument('--author', default=config.default_author)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    runtime = CallableRuntime(base_dir=args.data_dir)

    try:
        args.func(runtime, args)
    except (
        CompileError,
        SerialFormError,
        VersionError,
        CallableNotFoundError,
        InvalidCallableIdError,
    ) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    except Exception as e:
        # Errors raised by the callable's own body
        print(f"✗ {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())

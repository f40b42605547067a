"""
Helpers for converting methods into scripts, and filling in arguments with context objects.
"""

from functools import wraps
from inspect import cleandoc, signature
import logging
import sys
from typing import Any, Callable, cast, Dict, List, Optional, Union

from docopt import docopt
from sqlalchemy.orm import Session as SQLASession

from ..database import Session
from ..plumbing.common import Result
from ..provider import Provider
from ..resource import Diagnostics, has_errors, Severity


DocOptArgs = Dict[str, Union[bool, str, List[str]]]

NoneType = type(None)


ENTRYPOINTS: List[str] = []


def entrypoint(fn: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator to make an entrypoint out of a generic function.

    This uses `docopt` to parse arguments according to the method docstring, and will be formatted
    with `{script}` set to the script name.  At minimum, it should contain `Usage: {script}`.

    Functions may optionally accept arguments, but they must be annotated with a recognised type in
    order to be filled in.  The following types are fixed and always available:

    - `DocOptArgs` (a `dict` of input parameters parsed from the usage line)
    - `Session` (a SQLAlchemy session, committed if the function returns normally)
    - `Provider` (configured from the environment)

    Parameters of type `str` take the input parameter matching the variable name (the name must be
    declared in the usage line, either in upper case or surrounded by arrow brackets, e.g. `UNIT`
    or `<unit>`).

    An example function:

        @entrypoint
        def show(opts: DocOptArgs, provider: Provider, unit: str):
            \"""
            Print a unit's state.

            Usage: {script} UNIT
            \"""
    """
    label = "sysunit-{}-{}".format(fn.__module__.rsplit(".", 1)[-1],
                                   fn.__qualname__).replace("_", "-")

    @wraps(fn)
    def wrap(opts: Optional[DocOptArgs] = None):
        extra: Dict[str, Any] = {}
        script = "{} [--debug]".format(label)
        if opts is None:
            doc = cleandoc(fn.__doc__.format(script=script))
            opts = docopt(doc)
        if opts.pop("--debug", False):
            logging.basicConfig(level=logging.DEBUG)
        sess: Optional[SQLASession] = None
        # Detect resolvable-typed arguments and fill in their values.
        sig = signature(fn)
        for param in sig.parameters.values():
            name = param.name
            cls = param.annotation
            if cls is DocOptArgs:
                extra[name] = opts
                continue
            elif cls is SQLASession:
                sess = extra[name] = Session()
                continue
            elif cls is Provider:
                extra[name] = Provider.from_env()
                continue
            try:
                try:
                    value = cast(str, opts[name.upper()])
                except KeyError:
                    value = cast(str, opts["<{}>".format(name)])
            except KeyError:
                raise RuntimeError("Missing argument {!r}".format(name))
            # Unpick Optional[X] by reading the type object arguments and removing type(None).
            if getattr(cls, "__origin__", None) is Union:
                cls_args = cls.__args__
                if NoneType in cls_args:
                    if value is None:
                        extra[name] = None
                        continue
                    # NB. Union[X] for a single type X automatically resolves to X.
                    cls = Union[tuple(arg for arg in cls_args if arg is not NoneType)]
            if cls is str:
                extra[name] = value
            else:
                raise RuntimeError("Bad parameter {!r} type {!r}".format(name, cls))
        try:
            result = fn(**extra)
            if sess:
                sess.commit()
            return result
        except BaseException:
            if sess:
                sess.rollback()
            raise
        finally:
            if sess:
                sess.close()
    wrap.__doc__ = wrap.__doc__.format(script=label)
    # Create a console script line for setup.
    target = "{}:{}".format(fn.__module__, fn.__qualname__)
    ENTRYPOINTS.append("{}={}".format(label, target))
    return wrap


def timeout(opts: DocOptArgs) -> Optional[float]:
    """
    Read a `--timeout=SECS` option, if given.
    """
    value = opts.get("--timeout")
    if not value:
        return None
    try:
        return float(cast(str, value))
    except ValueError:
        error("Timeout must be a number of seconds, not {!r}".format(value), exit=2)


def report(result: Result[Diagnostics]) -> None:
    """
    Print the changes made and any problems, exiting with an error status if any were errors.
    """
    if result:
        print(result)
    for diag in result.value:
        error(str(diag), colour="1" if diag.severity is Severity.error else "3")
    if has_errors(result.value):
        sys.exit(1)


def confirm(msg: str = "Are you sure?"):
    """
    Prompt for confirmation before destructive actions.
    """
    try:
        yn = input("\033[96m{} [yN]\033[0m ".format(msg))
    except (KeyboardInterrupt, EOFError):
        print()
        yn = "n"
    if yn.lower() not in ("y", "yes"):
        error("Aborted!", exit=1)


def error(msg: Optional[str] = None, *, exit: Optional[int] = None, colour: Optional[str] = None):
    """
    Print an error message and/or exit.
    """
    if msg:
        colour = colour or ("1" if exit else "3")
        print("\033[9{}m{}\033[0m".format(colour, msg), file=sys.stderr)
    if exit is not None:
        sys.exit(exit)

"""Closed-surface async interpreter for workflow source.

Workflow code is Python syntax, but it never reaches ``exec``/``eval``.
``validate`` checks a parsed module against a fixed allowlist of node
types; ``Interpreter`` then walks the tree itself. Every name a workflow can
see comes from its own assignments, the binding table handed in for the
current invocation, or ``SAFE_BUILTINS``.

Everything runs inside one coroutine, so ``await`` works anywhere. Calling
an ``async def`` defined in workflow code yields a coroutine, exactly like
Python; calling a plain ``def`` runs it to completion.
"""

from __future__ import annotations

import ast
import inspect
import logging
import operator
from dataclasses import dataclass, field
from typing import Any, Mapping

from agentflow.errors import ExecutionError
from agentflow.workflow.registration import Every, On

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 100_000

READ_ONLY_NAMES = frozenset(
    {
        "on",
        "every",
        "repo",
        "claude",
        "pr",
        "issues",
        "epics",
        "git",
        "todo",
        "dag",
        "agents",
        "log",
    }
)

BLOCKED_ATTRIBUTES = frozenset(
    {
        "format",
        "format_map",
        "mro",
        "gi_frame",
        "gi_code",
        "cr_frame",
        "cr_code",
        "ag_frame",
        "ag_code",
        "tb_frame",
        "f_globals",
        "f_locals",
        "f_builtins",
    }
)

ALLOWED_NODES: tuple[type[ast.AST], ...] = (
    # structure
    ast.Module,
    ast.Expr,
    ast.FunctionDef,
    ast.AsyncFunctionDef,
    ast.Lambda,
    ast.arguments,
    ast.arg,
    ast.keyword,
    ast.Return,
    ast.Pass,
    ast.Break,
    ast.Continue,
    # binding
    ast.Assign,
    ast.AugAssign,
    ast.AnnAssign,
    ast.Name,
    ast.Load,
    ast.Store,
    # control flow
    ast.If,
    ast.For,
    ast.While,
    ast.Try,
    ast.ExceptHandler,
    ast.Raise,
    ast.Assert,
    ast.Await,
    # expressions
    ast.Call,
    ast.Attribute,
    ast.Subscript,
    ast.Slice,
    ast.Starred,
    ast.Constant,
    ast.JoinedStr,
    ast.FormattedValue,
    ast.Dict,
    ast.List,
    ast.Tuple,
    ast.Set,
    ast.ListComp,
    ast.SetComp,
    ast.DictComp,
    ast.GeneratorExp,
    ast.comprehension,
    ast.BinOp,
    ast.UnaryOp,
    ast.BoolOp,
    ast.Compare,
    ast.IfExp,
    ast.operator,
    ast.unaryop,
    ast.boolop,
    ast.cmpop,
)

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.BitAnd: operator.and_,
    ast.BitOr: operator.or_,
    ast.BitXor: operator.xor,
    ast.LShift: operator.lshift,
    ast.RShift: operator.rshift,
}

_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
    ast.Invert: operator.invert,
}

_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}


# ── Validation ───────────────────────────────────────────────────────────────


@dataclass
class Violation:
    message: str
    line: int | None = None
    column: int | None = None


def validate(tree: ast.Module) -> list[Violation]:
    """Report every construct outside the interpreter's surface."""
    violations: list[Violation] = []

    def add(node: ast.AST, message: str) -> None:
        violations.append(
            Violation(
                message,
                getattr(node, "lineno", None),
                (node.col_offset + 1) if hasattr(node, "col_offset") else None,
            )
        )

    for node in ast.walk(tree):
        if not isinstance(node, ALLOWED_NODES):
            add(node, f"Unsupported construct '{type(node).__name__}'")
            continue
        if isinstance(node, ast.Attribute):
            if node.attr.startswith("_") or node.attr in BLOCKED_ATTRIBUTES:
                add(node, f"Access to attribute '{node.attr}' is not allowed")
            if isinstance(node.ctx, ast.Store):
                add(node, "Attribute assignment is not allowed")
        elif isinstance(node, ast.Name):
            if node.id.startswith("__"):
                add(node, f"Name '{node.id}' is not allowed")
            elif isinstance(node.ctx, ast.Store) and node.id in READ_ONLY_NAMES:
                add(node, f"Cannot assign to read-only name '{node.id}'")
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            if node.name in READ_ONLY_NAMES:
                add(node, f"Cannot redefine read-only name '{node.name}'")
        elif isinstance(node, ast.ExceptHandler):
            if node.name in READ_ONLY_NAMES:
                add(node, f"Cannot assign to read-only name '{node.name}'")
        elif isinstance(node, ast.Starred) and isinstance(node.ctx, ast.Store):
            add(node, "Starred assignment is not supported")
    return violations


# ── Runtime structures ───────────────────────────────────────────────────────


class _Return(BaseException):
    def __init__(self, value: Any):
        self.value = value


class _Break(BaseException):
    pass


class _Continue(BaseException):
    pass


class Scope:
    def __init__(self, parent: Scope | None = None):
        self.vars: dict[str, Any] = {}
        self.parent = parent

    def find(self, name: str) -> Scope | None:
        scope: Scope | None = self
        while scope is not None:
            if name in scope.vars:
                return scope
            scope = scope.parent
        return None


@dataclass
class Context:
    """Per-invocation state: the binding table and the current line."""

    bindings: Mapping[str, Any]
    workflow: str
    line: int = 0
    loop_budget: int = field(default=MAX_ITERATIONS)


_MISSING = object()


class WorkflowFunction:
    """A function defined in workflow code.

    Awaiting a call from host code runs it with the binding table captured
    when it was defined, unless ``call_with_bindings`` supplies another one.
    Extra positional arguments from the host are dropped.
    """

    def __init__(
        self,
        interpreter: Interpreter,
        node: ast.FunctionDef | ast.AsyncFunctionDef | ast.Lambda,
        closure: Scope,
        defaults: list[Any],
        kw_defaults: list[Any],
        ctx: Context,
    ):
        self._interpreter = interpreter
        self._node = node
        self._closure = closure
        self._defaults = defaults
        self._kw_defaults = kw_defaults
        self._ctx = ctx
        self.name = getattr(node, "name", "<lambda>")
        self.is_async = isinstance(node, ast.AsyncFunctionDef)

    def __repr__(self) -> str:
        return f"<workflow function {self.name}>"

    async def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return await self.call_with_bindings(args, kwargs, None)

    async def call_with_bindings(
        self, args: tuple | list, kwargs: dict, bindings: Mapping[str, Any] | None
    ) -> Any:
        ctx = Context(
            bindings=self._ctx.bindings if bindings is None else bindings,
            workflow=self._ctx.workflow,
        )
        try:
            return await self.invoke(list(args), kwargs, ctx, drop_extra=True)
        except ExecutionError:
            raise
        except Exception as e:
            raise ExecutionError(
                f"{self.name} failed at line {ctx.line}: {e}", workflow=ctx.workflow, line=ctx.line
            ) from e

    def _bind(self, args: list, kwargs: dict, drop_extra: bool) -> dict[str, Any]:
        spec = self._node.args
        positional = [a.arg for a in spec.posonlyargs + spec.args]
        values: dict[str, Any] = dict(zip(positional, args))

        extra = args[len(positional):]
        if spec.vararg is not None:
            values[spec.vararg.arg] = tuple(extra)
        elif extra and not drop_extra:
            raise TypeError(
                f"{self.name}() takes {len(positional)} positional arguments but {len(args)} were given"
            )

        kwonly = [a.arg for a in spec.kwonlyargs]
        extra_kwargs: dict[str, Any] = {}
        for key, value in kwargs.items():
            if key in values:
                raise TypeError(f"{self.name}() got multiple values for argument '{key}'")
            if key in positional or key in kwonly:
                values[key] = value
            elif spec.kwarg is not None:
                extra_kwargs[key] = value
            else:
                raise TypeError(f"{self.name}() got an unexpected keyword argument '{key}'")
        if spec.kwarg is not None:
            values[spec.kwarg.arg] = extra_kwargs

        first_default = len(positional) - len(self._defaults)
        for i, name in enumerate(positional):
            if name not in values:
                if i >= first_default:
                    values[name] = self._defaults[i - first_default]
                else:
                    raise TypeError(f"{self.name}() missing required argument '{name}'")
        for name, default in zip(kwonly, self._kw_defaults):
            if name not in values:
                if default is _MISSING:
                    raise TypeError(f"{self.name}() missing keyword-only argument '{name}'")
                values[name] = default
        return values

    async def invoke(self, args: list, kwargs: dict, ctx: Context, drop_extra: bool = False) -> Any:
        scope = Scope(self._closure)
        scope.vars.update(self._bind(args, kwargs, drop_extra))
        interp = self._interpreter
        if isinstance(self._node, ast.Lambda):
            return await interp.eval(self._node.body, scope, ctx)
        try:
            await interp.exec_block(self._node.body, scope, ctx)
        except _Return as r:
            return r.value
        return None


class AsyncBuiltin:
    """A builtin that may need to call workflow functions (``key=`` etc.)."""

    def __init__(self, name: str, fn):
        self.name = name
        self.fn = fn

    def __repr__(self) -> str:
        return f"<builtin {self.name}>"


async def _sorted(call, iterable, *, key=None, reverse=False):
    items = list(iterable)
    if key is None:
        return sorted(items, reverse=reverse)
    keys = [await call(key, item) for item in items]
    order = sorted(range(len(items)), key=keys.__getitem__, reverse=reverse)
    return [items[i] for i in order]


async def _extreme(pick, call, args, key, kwargs):
    items = list(args[0]) if len(args) == 1 else list(args)
    if key is None or not items:
        return pick(items, **kwargs)
    keys = [await call(key, item) for item in items]
    return items[pick(range(len(items)), key=keys.__getitem__)]


async def _min(call, *args, key=None, **kwargs):
    return await _extreme(min, call, args, key, kwargs)


async def _max(call, *args, key=None, **kwargs):
    return await _extreme(max, call, args, key, kwargs)


async def _map(call, fn, *iterables):
    return [await call(fn, *items) for items in zip(*iterables)]


async def _filter(call, fn, iterable):
    if fn is None:
        return [item for item in iterable if item]
    return [item for item in iterable if await call(fn, item)]


SAFE_BUILTINS: dict[str, Any] = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "list": list,
    "dict": dict,
    "set": set,
    "tuple": tuple,
    "range": range,
    "enumerate": enumerate,
    "zip": zip,
    "sum": sum,
    "any": any,
    "all": all,
    "abs": abs,
    "round": round,
    "reversed": reversed,
    "repr": repr,
    "isinstance": isinstance,
    "sorted": AsyncBuiltin("sorted", _sorted),
    "min": AsyncBuiltin("min", _min),
    "max": AsyncBuiltin("max", _max),
    "map": AsyncBuiltin("map", _map),
    "filter": AsyncBuiltin("filter", _filter),
    "Exception": Exception,
    "ValueError": ValueError,
    "KeyError": KeyError,
    "TypeError": TypeError,
    "RuntimeError": RuntimeError,
    "LookupError": LookupError,
    "TimeoutError": TimeoutError,
}


# ── Interpreter ──────────────────────────────────────────────────────────────


class Interpreter:
    def __init__(self, tree: ast.Module, workflow: str):
        self.tree = tree
        self.workflow = workflow
        self.module_scope = Scope()
        self._log = logging.getLogger(f"agentflow.workflow.{workflow}")

    async def run_module(self, bindings: Mapping[str, Any]) -> Scope:
        """Execute the module body once. Failures surface as ExecutionError."""
        ctx = Context(bindings=bindings, workflow=self.workflow)
        try:
            await self.exec_block(self.tree.body, self.module_scope, ctx)
        except _Return:
            raise ExecutionError(
                "'return' outside function", workflow=self.workflow, line=ctx.line
            ) from None
        except (_Break, _Continue):
            raise ExecutionError(
                "'break'/'continue' outside loop", workflow=self.workflow, line=ctx.line
            ) from None
        except ExecutionError:
            raise
        except Exception as e:
            raise ExecutionError(
                f"Workflow {self.workflow} failed at line {ctx.line}: {e}",
                workflow=self.workflow,
                line=ctx.line,
            ) from e
        return self.module_scope

    # ── Names ────────────────────────────────────────────────────────────

    def lookup(self, name: str, scope: Scope, ctx: Context) -> Any:
        found = scope.find(name)
        if found is not None:
            return found.vars[name]
        if name in ctx.bindings:
            return ctx.bindings[name]
        if name == "print":
            return self._print
        if name in SAFE_BUILTINS:
            return SAFE_BUILTINS[name]
        raise NameError(f"name '{name}' is not defined")

    def _print(self, *args: Any) -> None:
        self._log.info(" ".join(str(a) for a in args))

    # ── Statements ───────────────────────────────────────────────────────

    async def exec_block(self, body: list[ast.stmt], scope: Scope, ctx: Context) -> None:
        for stmt in body:
            await self.exec_stmt(stmt, scope, ctx)

    async def exec_stmt(self, node: ast.stmt, scope: Scope, ctx: Context) -> None:
        ctx.line = node.lineno

        if isinstance(node, ast.Expr):
            await self.eval(node.value, scope, ctx)
        elif isinstance(node, ast.Assign):
            value = await self.eval(node.value, scope, ctx)
            for target in node.targets:
                await self.assign(target, value, scope, ctx)
        elif isinstance(node, ast.AnnAssign):
            if node.value is not None:
                await self.assign(node.target, await self.eval(node.value, scope, ctx), scope, ctx)
        elif isinstance(node, ast.AugAssign):
            await self._aug_assign(node, scope, ctx)
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            fn: Any = await self._make_function(node, scope, ctx)
            for decorator in reversed(node.decorator_list):
                dec = await self.eval(decorator, scope, ctx)
                result = await self.call(dec, [fn], {}, ctx)
                if inspect.isawaitable(result):
                    result = await result
                # on/every return the builder; the function keeps its own name
                if not isinstance(result, (On, Every)):
                    fn = result
            scope.vars[node.name] = fn
        elif isinstance(node, ast.Return):
            value = None if node.value is None else await self.eval(node.value, scope, ctx)
            raise _Return(value)
        elif isinstance(node, ast.If):
            if await self.eval(node.test, scope, ctx):
                await self.exec_block(node.body, scope, ctx)
            else:
                await self.exec_block(node.orelse, scope, ctx)
        elif isinstance(node, ast.For):
            await self._for(node, scope, ctx)
        elif isinstance(node, ast.While):
            await self._while(node, scope, ctx)
        elif isinstance(node, ast.Try):
            await self._try(node, scope, ctx)
        elif isinstance(node, ast.Raise):
            if node.exc is None:
                raise RuntimeError("bare 'raise' is not supported")
            exc = await self.eval(node.exc, scope, ctx)
            if isinstance(exc, type) and issubclass(exc, BaseException):
                exc = exc()
            if not isinstance(exc, Exception):
                raise TypeError("exceptions must derive from Exception")
            raise exc
        elif isinstance(node, ast.Assert):
            if not await self.eval(node.test, scope, ctx):
                msg = None if node.msg is None else await self.eval(node.msg, scope, ctx)
                raise AssertionError(msg) if msg is not None else AssertionError()
        elif isinstance(node, ast.Pass):
            pass
        elif isinstance(node, ast.Break):
            raise _Break()
        elif isinstance(node, ast.Continue):
            raise _Continue()
        else:
            raise SyntaxError(f"Unsupported statement '{type(node).__name__}'")

    async def assign(self, target: ast.expr, value: Any, scope: Scope, ctx: Context) -> None:
        if isinstance(target, ast.Name):
            if target.id in READ_ONLY_NAMES:
                raise NameError(f"cannot assign to read-only name '{target.id}'")
            scope.vars[target.id] = value
        elif isinstance(target, (ast.Tuple, ast.List)):
            items = list(value)
            if len(items) != len(target.elts):
                raise ValueError(
                    f"expected {len(target.elts)} values to unpack, got {len(items)}"
                )
            for elt, item in zip(target.elts, items):
                await self.assign(elt, item, scope, ctx)
        elif isinstance(target, ast.Subscript):
            obj = await self.eval(target.value, scope, ctx)
            obj[await self.eval(target.slice, scope, ctx)] = value
        else:
            raise SyntaxError(f"Cannot assign to {type(target).__name__}")

    async def _aug_assign(self, node: ast.AugAssign, scope: Scope, ctx: Context) -> None:
        op = _BIN_OPS[type(node.op)]
        rhs = await self.eval(node.value, scope, ctx)
        target = node.target
        if isinstance(target, ast.Name):
            current = self.lookup(target.id, scope, ctx)
            await self.assign(target, op(current, rhs), scope, ctx)
        elif isinstance(target, ast.Subscript):
            obj = await self.eval(target.value, scope, ctx)
            key = await self.eval(target.slice, scope, ctx)
            obj[key] = op(obj[key], rhs)
        else:
            raise SyntaxError(f"Cannot assign to {type(target).__name__}")

    def _spend(self, ctx: Context) -> None:
        ctx.loop_budget -= 1
        if ctx.loop_budget < 0:
            raise RuntimeError(f"loop exceeded {MAX_ITERATIONS} iterations")

    async def _for(self, node: ast.For, scope: Scope, ctx: Context) -> None:
        iterable = await self.eval(node.iter, scope, ctx)
        for item in iterable:
            self._spend(ctx)
            await self.assign(node.target, item, scope, ctx)
            try:
                await self.exec_block(node.body, scope, ctx)
            except _Break:
                return
            except _Continue:
                continue
        await self.exec_block(node.orelse, scope, ctx)

    async def _while(self, node: ast.While, scope: Scope, ctx: Context) -> None:
        while await self.eval(node.test, scope, ctx):
            self._spend(ctx)
            try:
                await self.exec_block(node.body, scope, ctx)
            except _Break:
                return
            except _Continue:
                continue
        await self.exec_block(node.orelse, scope, ctx)

    async def _try(self, node: ast.Try, scope: Scope, ctx: Context) -> None:
        try:
            try:
                await self.exec_block(node.body, scope, ctx)
            except Exception as exc:
                for handler in node.handlers:
                    if handler.type is not None:
                        expected = await self.eval(handler.type, scope, ctx)
                        if not isinstance(exc, expected):
                            continue
                    if handler.name:
                        scope.vars[handler.name] = exc
                    await self.exec_block(handler.body, scope, ctx)
                    break
                else:
                    raise
            else:
                await self.exec_block(node.orelse, scope, ctx)
        finally:
            if node.finalbody:
                await self.exec_block(node.finalbody, scope, ctx)

    async def _make_function(
        self, node: ast.FunctionDef | ast.AsyncFunctionDef | ast.Lambda, scope: Scope, ctx: Context
    ) -> WorkflowFunction:
        defaults = [await self.eval(d, scope, ctx) for d in node.args.defaults]
        kw_defaults = [
            _MISSING if d is None else await self.eval(d, scope, ctx) for d in node.args.kw_defaults
        ]
        return WorkflowFunction(self, node, scope, defaults, kw_defaults, ctx)

    # ── Expressions ──────────────────────────────────────────────────────

    async def eval(self, node: ast.expr, scope: Scope, ctx: Context) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            return self.lookup(node.id, scope, ctx)
        if isinstance(node, ast.Attribute):
            if node.attr.startswith("_") or node.attr in BLOCKED_ATTRIBUTES:
                raise AttributeError(f"access to attribute '{node.attr}' is not allowed")
            return getattr(await self.eval(node.value, scope, ctx), node.attr)
        if isinstance(node, ast.Call):
            return await self._eval_call(node, scope, ctx)
        if isinstance(node, ast.Await):
            return await await_value(await self.eval(node.value, scope, ctx))
        if isinstance(node, ast.JoinedStr):
            return await self._fstring(node, scope, ctx)
        if isinstance(node, ast.BinOp):
            left = await self.eval(node.left, scope, ctx)
            right = await self.eval(node.right, scope, ctx)
            return _BIN_OPS[type(node.op)](left, right)
        if isinstance(node, ast.UnaryOp):
            return _UNARY_OPS[type(node.op)](await self.eval(node.operand, scope, ctx))
        if isinstance(node, ast.BoolOp):
            is_and = isinstance(node.op, ast.And)
            value: Any = None
            for operand in node.values:
                value = await self.eval(operand, scope, ctx)
                if is_and and not value:
                    return value
                if not is_and and value:
                    return value
            return value
        if isinstance(node, ast.Compare):
            left = await self.eval(node.left, scope, ctx)
            for op, comparator in zip(node.ops, node.comparators):
                right = await self.eval(comparator, scope, ctx)
                if not _COMPARE_OPS[type(op)](left, right):
                    return False
                left = right
            return True
        if isinstance(node, ast.IfExp):
            if await self.eval(node.test, scope, ctx):
                return await self.eval(node.body, scope, ctx)
            return await self.eval(node.orelse, scope, ctx)
        if isinstance(node, ast.Subscript):
            obj = await self.eval(node.value, scope, ctx)
            return obj[await self.eval(node.slice, scope, ctx)]
        if isinstance(node, ast.Slice):
            return slice(
                None if node.lower is None else await self.eval(node.lower, scope, ctx),
                None if node.upper is None else await self.eval(node.upper, scope, ctx),
                None if node.step is None else await self.eval(node.step, scope, ctx),
            )
        if isinstance(node, (ast.List, ast.Tuple, ast.Set)):
            items = await self._eval_elements(node.elts, scope, ctx)
            if isinstance(node, ast.Tuple):
                return tuple(items)
            if isinstance(node, ast.Set):
                return set(items)
            return items
        if isinstance(node, ast.Dict):
            result = {}
            for key, value in zip(node.keys, node.values):
                if key is None:
                    result.update(await self.eval(value, scope, ctx))
                else:
                    result[await self.eval(key, scope, ctx)] = await self.eval(value, scope, ctx)
            return result
        if isinstance(node, (ast.ListComp, ast.SetComp, ast.GeneratorExp)):
            items = []
            await self._comprehension(node.generators, 0, Scope(scope), ctx, node.elt, items)
            return set(items) if isinstance(node, ast.SetComp) else items
        if isinstance(node, ast.DictComp):
            pairs: list[tuple[Any, Any]] = []
            await self._comprehension(
                node.generators, 0, Scope(scope), ctx, (node.key, node.value), pairs
            )
            return dict(pairs)
        if isinstance(node, ast.Lambda):
            return await self._make_function(node, scope, ctx)
        raise SyntaxError(f"Unsupported expression '{type(node).__name__}'")

    async def _eval_elements(self, elts: list[ast.expr], scope: Scope, ctx: Context) -> list:
        items: list[Any] = []
        for elt in elts:
            if isinstance(elt, ast.Starred):
                items.extend(await self.eval(elt.value, scope, ctx))
            else:
                items.append(await self.eval(elt, scope, ctx))
        return items

    async def _comprehension(self, generators, index, scope, ctx, elt, out) -> None:
        if index == len(generators):
            if isinstance(elt, tuple):
                out.append((await self.eval(elt[0], scope, ctx), await self.eval(elt[1], scope, ctx)))
            else:
                out.append(await self.eval(elt, scope, ctx))
            return
        gen = generators[index]
        for item in await self.eval(gen.iter, scope, ctx):
            self._spend(ctx)
            await self.assign(gen.target, item, scope, ctx)
            for cond in gen.ifs:
                if not await self.eval(cond, scope, ctx):
                    break
            else:
                await self._comprehension(generators, index + 1, scope, ctx, elt, out)

    async def _fstring(self, node: ast.JoinedStr, scope: Scope, ctx: Context) -> str:
        parts = []
        for value in node.values:
            if isinstance(value, ast.Constant):
                parts.append(str(value.value))
                continue
            result = await self.eval(value.value, scope, ctx)
            if value.conversion == ord("r"):
                result = repr(result)
            elif value.conversion == ord("a"):
                result = ascii(result)
            elif value.conversion == ord("s"):
                result = str(result)
            spec = "" if value.format_spec is None else await self._fstring(value.format_spec, scope, ctx)
            parts.append(format(result, spec))
        return "".join(parts)

    async def _eval_call(self, node: ast.Call, scope: Scope, ctx: Context) -> Any:
        func = await self.eval(node.func, scope, ctx)
        args = await self._eval_elements(node.args, scope, ctx)
        kwargs: dict[str, Any] = {}
        for kw in node.keywords:
            if kw.arg is None:
                kwargs.update(await self.eval(kw.value, scope, ctx))
            else:
                kwargs[kw.arg] = await self.eval(kw.value, scope, ctx)
        return await self.call(func, args, kwargs, ctx)

    async def call(self, func: Any, args: list, kwargs: dict, ctx: Context) -> Any:
        """Call ``func`` from workflow code.

        Async workflow functions return an un-awaited coroutine, like Python.
        Host callables are called directly; their coroutines are returned
        for the workflow to await.
        """
        if isinstance(func, WorkflowFunction):
            coro = func.invoke(args, kwargs, ctx)
            if func.is_async:
                return coro
            return await coro
        if isinstance(func, AsyncBuiltin):
            return await func.fn(self._caller(ctx), *args, **kwargs)
        if not callable(func):
            raise TypeError(f"'{type(func).__name__}' object is not callable")
        return func(*args, **kwargs)

    def _caller(self, ctx: Context):
        async def call(fn: Any, *args: Any) -> Any:
            return await await_value(await self.call(fn, list(args), {}, ctx))

        return call


async def await_value(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value

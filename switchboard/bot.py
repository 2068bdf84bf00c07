"""Command router for switchboard.

A Bot holds an ordered command registry and dispatches each inbound
message to the first command whose pattern (or predicate) matches.
Bots form a tree through ``use()``: hooks registered on a Bot in
``scoped`` or ``global`` scope propagate to its parent or to the whole
tree.

Dispatch order for one message:

    request -> parse -> transform hooks
    first matching command:
        args schema -> before_handle -> handler -> after_handle
        -> auto-reply (str results) -> after_response hooks
        any failure -> error middleware
    no match -> nothing

Key classes:
    Bot: Registration API (cmd, hears, group, use, on, ...) and the
        dispatcher (handle).
"""

from collections import deque
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import structlog

from .command import Command, CommandOptions, Handler, Predicate
from .config import HOOK_NAMES, BotConfig, Scope
from .context import Context
from .exceptions import ConfigurationError
from .logging_config import dispatch_context
from .message import InboundMessage, Transport, serialize
from .middleware import ErrorHandler, Middleware, MiddlewareEngine, maybe_await
from .patterns import (
    PatternType,
    PrefixType,
    check_args_order,
    compile_pattern,
    compose_prefix,
    describe_pattern,
)
from .schema import field_definitions, is_schema

logger = structlog.get_logger("switchboard.router")

Hook = Callable[[Context], Any]
Plugin = Union["Bot", Callable[["Bot"], Any], Any]

DISPATCH_HOOKS = ("request", "parse", "transform")


class Bot:
    """Chat command router.

    Registration methods return the Bot so calls can be chained::

        bot = Bot()
        bot.cmd("ping", "Pong!").cmd("echo :text", lambda ctx: ctx.params["text"])

    Registration is meant to happen during setup, before the first
    message is dispatched.

    Args:
        config: Bot configuration. Keyword overrides are applied on top
            (``Bot(prefix="!")``).
    """

    LOCAL = Scope.LOCAL
    SCOPED = Scope.SCOPED
    GLOBAL = Scope.GLOBAL

    def __init__(self, config: Optional[BotConfig] = None, **overrides: Any):
        if config is None:
            config = BotConfig(**overrides)
        elif overrides:
            data = {name: getattr(config, name) for name in type(config).model_fields}
            data.update(overrides)
            config = BotConfig(**data)
        self.config = config

        self.commands: List[Command] = []
        self.transport: Optional[Transport] = None
        self.account: Optional[str] = None

        self._middleware = MiddlewareEngine()
        self._hooks: Dict[str, List[Hook]] = {name: [] for name in HOOK_NAMES}
        self._prefix_stack: List[PrefixType] = [config.prefix]
        self._parent: Optional[Bot] = None
        self._children: List[Bot] = []

        if self.config.enable_help:
            self.cmd("help", self._send_help, description="Displays this help message")

    def __repr__(self) -> str:
        return (
            f"Bot(scope={self.config.scope.value!r}, prefix={self.current_prefix!r}, "
            f"commands={len(self.commands)})"
        )

    # --- Introspection ---

    @property
    def current_prefix(self) -> PrefixType:
        """Prefix applied to commands registered right now."""
        return self._prefix_stack[-1] if self._prefix_stack else ""

    @property
    def middleware(self) -> MiddlewareEngine:
        """Copy of this Bot's own before/after/error middleware."""
        return self._middleware.copy()

    @property
    def hooks(self) -> Dict[str, List[Hook]]:
        """Copy of the hook registry, keyed by hook name."""
        return {name: list(fns) for name, fns in self._hooks.items()}

    @property
    def parent(self) -> Optional["Bot"]:
        return self._parent

    @property
    def children(self) -> List["Bot"]:
        return list(self._children)

    # --- Tree ---

    def _root(self) -> "Bot":
        root = self
        while root._parent is not None:
            root = root._parent
        return root

    def _is_ancestor_of(self, other: "Bot") -> bool:
        node = other._parent
        while node is not None:
            if node is self:
                return True
            node = node._parent
        return False

    def _set_parent(self, parent: "Bot") -> "Bot":
        if parent is self:
            raise ConfigurationError("Cannot set self as parent", module="bot")
        if self._is_ancestor_of(parent):
            raise ConfigurationError(
                "Cannot attach a Bot below one of its own descendants", module="bot"
            )
        if self._parent is not None:
            self._parent._children = [c for c in self._parent._children if c is not self]
        self._parent = parent
        if not any(child is self for child in parent._children):
            parent._children.append(self)
        return self

    def _apply_globally(self, hook_name: str, fn: Hook) -> None:
        """Append ``fn`` to every Bot in the tree, breadth first from the root."""
        queue = deque([self._root()])
        seen = set()
        while queue:
            bot = queue.popleft()
            if id(bot) in seen:
                continue
            seen.add(id(bot))
            bot._hooks[hook_name].append(fn)
            queue.extend(bot._children)

    # --- Scoped state ---

    def _snapshot(self) -> dict:
        return {
            "prefix_stack": list(self._prefix_stack),
            "middleware": self._middleware.copy(),
            "hooks": {name: list(fns) for name, fns in self._hooks.items()},
        }

    def _restore(self, snapshot: dict) -> None:
        self._prefix_stack = list(snapshot["prefix_stack"])
        self._middleware = snapshot["middleware"]
        self._hooks = {name: list(fns) for name, fns in snapshot["hooks"].items()}

    def group(self, prefix: PrefixType, fn: Callable[["Bot"], Any], sep: str = " ") -> "Bot":
        """Register commands under a composed prefix.

        Prefix, hooks and middleware added inside ``fn`` are rolled back
        when it returns; commands registered inside ``fn`` stay.
        """
        snapshot = self._snapshot()
        self._prefix_stack.append(compose_prefix(self.current_prefix, prefix, sep))
        try:
            fn(self)
        finally:
            self._restore(snapshot)
        return self

    def as_scope(self, scope: Union[Scope, str]) -> "Bot":
        """Switch the hook propagation scope (local, scoped, global)."""
        self.config = self.config.with_scope(scope)
        return self

    # --- Plugins ---

    def use(self, plugin: Plugin, prefix: PrefixType = "") -> "Bot":
        """Mount a plugin under ``prefix``.

        ``plugin`` may be another Bot (it becomes a child of this Bot and,
        when its scope is local, its pattern commands are re-registered
        here with their own middleware snapshot), a callable taking this
        Bot, or an object with an ``install(bot)`` method. A scoped or
        global Bot only contributes hooks.
        """
        if isinstance(plugin, Bot):
            plugin._set_parent(self)

        def install(bot: "Bot") -> None:
            if isinstance(plugin, Bot):
                if plugin.config.scope is Scope.LOCAL:
                    bot._mount(plugin)
                else:
                    logger.debug(
                        "plugin_attached_without_commands",
                        scope=plugin.config.scope.value,
                        commands=len(plugin.commands),
                    )
            elif callable(plugin):
                plugin(bot)
            elif callable(getattr(plugin, "install", None)):
                plugin.install(bot)
            else:
                logger.warning(
                    "plugin_invalid_type",
                    type=type(plugin).__name__,
                    msg="Must be a Bot, a callable, or an object with install()",
                )

        return self.group(prefix, install)

    def _mount(self, plugin: "Bot") -> None:
        for command in plugin.commands:
            if command.pattern is None:
                continue
            options = CommandOptions(
                description=command.options.description,
                before_handle=list(command.middleware.before_handle),
                after_handle=list(command.middleware.after_handle),
                error=list(command.middleware.error),
                args=command.args,
            )
            self._register(
                command.original_pattern,
                command.handler,
                options,
                prefix=compose_prefix(self.current_prefix, command.prefix),
            )
        logger.debug(
            "plugin_mounted",
            commands=len(plugin.commands),
            prefix=str(self.current_prefix),
            scope=plugin.config.scope.value,
        )

    # --- Commands ---

    def _register(
        self,
        pattern: PatternType,
        handler: Handler,
        options: CommandOptions,
        prefix: Optional[PrefixType] = None,
    ) -> "Bot":
        args = options.args
        check_args_order(args)
        if prefix is None:
            prefix = self.current_prefix

        middleware = MiddlewareEngine.merge_all(self._middleware, options)
        self.commands.append(Command(
            handler=handler,
            middleware=middleware,
            options=options,
            pattern=compile_pattern(pattern, prefix, args),
            original_pattern=pattern,
            args=args,
            prefix=prefix,
        ))
        logger.debug(
            "command_registered",
            pattern=describe_pattern(pattern),
            prefix=describe_pattern(prefix),
        )
        return self

    def command(
        self,
        pattern: PatternType,
        handler: Handler,
        *,
        args: Any = None,
        description: str = "",
        before_handle: Union[Middleware, List[Middleware], None] = None,
        after_handle: Union[Middleware, List[Middleware], None] = None,
        error: Union[ErrorHandler, List[ErrorHandler], None] = None,
    ) -> "Bot":
        """Register ``handler`` for messages matching ``pattern``.

        A ``str`` returned by the handler is sent back as a reply.

        Raises:
            ConfigurationError: If ``args`` lists a required field after
                an optional one, or the pattern cannot be compiled.
        """
        options = CommandOptions.build(
            description=description,
            before_handle=before_handle,
            after_handle=after_handle,
            error=error,
            args=args,
        )
        return self._register(pattern, handler, options)

    def respond(self, pattern: PatternType, text: str, **options: Any) -> "Bot":
        """Register a command that always replies with ``text``."""
        async def reply_with_text(ctx: Context) -> None:
            await ctx.msg.reply(text)

        return self.command(pattern, reply_with_text, **options)

    def cmd(self, pattern: PatternType, *targets: Any, **options: Any):
        """Register a command, picking the call shape from the arguments.

        Accepted shapes::

            cmd(pattern, handler, **options)
            cmd(pattern, schema, handler, **options)
            cmd(pattern, "literal reply", **options)
            cmd(pattern, schema, "literal reply", **options)

        Without a handler, returns a decorator::

            @bot.cmd("sum :a :b", t.object({"a": t.number(), "b": t.number()}))
            async def add(ctx): ...
        """
        targets = list(targets)
        if targets and is_schema(targets[0]):
            options["args"] = targets.pop(0)
        if len(targets) > 1:
            raise ConfigurationError(
                "Invalid cmd signature: pass options as keyword arguments",
                module="bot",
            )

        if not targets:
            def decorator(fn: Handler) -> Handler:
                self.command(pattern, fn, **options)
                return fn
            return decorator

        target = targets[0]
        if isinstance(target, str):
            return self.respond(pattern, target, **options)
        if callable(target):
            return self.command(pattern, target, **options)
        raise ConfigurationError(
            f"Invalid cmd signature: expected a handler, schema or string, got {type(target).__name__}",
            module="bot",
        )

    def hears(self, predicate: Predicate, handler: Handler, **options: Any) -> "Bot":
        """Register a free-form command matched by ``predicate(raw_message)``."""
        opts = CommandOptions.build(**options)
        self.commands.append(Command(
            handler=handler,
            middleware=MiddlewareEngine.merge_all(self._middleware, opts),
            options=opts,
            predicate=predicate,
            args=opts.args,
            prefix=self.current_prefix,
        ))
        logger.debug("predicate_registered", predicate=getattr(predicate, "__name__", repr(predicate)))
        return self

    # --- Hooks and middleware ---

    def on(self, hook_name: str, fn: Hook) -> "Bot":
        """Register a lifecycle hook, propagated according to the scope."""
        if hook_name not in self._hooks:
            raise ConfigurationError(
                f"Invalid hook name: {hook_name}. Valid hooks: {', '.join(HOOK_NAMES)}",
                module="bot",
            )

        scope = self.config.scope
        if scope is Scope.GLOBAL:
            self._apply_globally(hook_name, fn)
        else:
            self._hooks[hook_name].append(fn)
            if scope is Scope.SCOPED and self._parent is not None:
                self._parent._hooks[hook_name].append(fn)
        return self

    def on_request(self, fn: Hook) -> "Bot":
        return self.on("request", fn)

    def on_parse(self, fn: Hook) -> "Bot":
        return self.on("parse", fn)

    def on_transform(self, fn: Hook) -> "Bot":
        return self.on("transform", fn)

    def on_after_response(self, fn: Hook) -> "Bot":
        return self.on("after_response", fn)

    def on_pairing(self, fn: Callable[[str], Any]) -> "Bot":
        """Receive the device link produced when pairing this account."""
        if self.config.pairing is None:
            raise ConfigurationError(
                "This instance does not login using pairing",
                setting_name="pairing",
                module="bot",
            )
        return self.on("pairing", fn)

    def on_before_handle(self, fn: Middleware) -> "Bot":
        self._middleware.add_before_handle(fn)
        return self

    def on_after_handle(self, fn: Middleware) -> "Bot":
        self._middleware.add_after_handle(fn)
        return self

    def on_error(self, fn: ErrorHandler) -> "Bot":
        self._middleware.add_error_handler(fn)
        return self

    async def _run_hooks(self, hook_name: str, arg: Any) -> None:
        # Hooks observe; their return values never change dispatch.
        for fn in list(self._hooks[hook_name]):
            try:
                await maybe_await(fn(arg))
            except Exception as e:
                logger.error(
                    "hook_failed",
                    hook=hook_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def emit_pairing(self, link: str) -> None:
        """Hand a device link to the pairing hooks."""
        if not self._hooks["pairing"]:
            logger.warning("pairing_link_unhandled", link=link)
            return
        await self._run_hooks("pairing", link)

    # --- Dispatch ---

    async def handle(self, message: Union[InboundMessage, Mapping, Any]) -> None:
        """Dispatch one inbound message to the first matching command.

        Never raises for failures inside the dispatch: they are routed
        to the matched command's error middleware.

        Args:
            message: ``InboundMessage(body, raw)``, or any mapping or
                object exposing ``body`` and ``raw``.
        """
        if self.transport is None:
            logger.error("handle_without_transport", msg="Handler called before transport was attached")
            return

        if isinstance(message, Mapping):
            body, raw = message.get("body") or "", message.get("raw")
        else:
            body, raw = getattr(message, "body", "") or "", getattr(message, "raw", None)

        ctx = Context(msg=serialize(raw, self.transport, self.account), raw=raw)
        with dispatch_context(ctx.msg.chat):
            await self._dispatch(body, raw, ctx)

    async def _dispatch(self, body: str, raw: Any, ctx: Context) -> None:
        for hook_name in DISPATCH_HOOKS:
            await self._run_hooks(hook_name, ctx)

        for command in list(self.commands):
            try:
                params = command.match(body, raw)
            except Exception as e:
                logger.error(
                    "predicate_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            if params is None:
                continue

            ctx.params = params
            with dispatch_context(ctx.msg.chat, command.display_pattern or "<predicate>"):
                logger.debug("command_matched", params=sorted(params))
                await self._execute(command, ctx)
            return

        logger.debug("message_unmatched", length=len(body))

    async def _execute(self, command: Command, ctx: Context) -> None:
        # A nullable field left out of the text is None, not missing.
        for key, definition in field_definitions(command.args).items():
            if key not in ctx.params and definition.nullable:
                ctx.params[key] = None

        try:
            if command.args is not None:
                ctx.params = command.args.parse(ctx.params)

            short_circuit = await command.middleware.execute_before(ctx)
            if short_circuit:
                ctx.result = short_circuit
                if isinstance(short_circuit, str):
                    await ctx.msg.reply(short_circuit)
                return

            result = await maybe_await(command.handler(ctx))
            ctx.result = result
            await command.middleware.execute_after(ctx, result)

            if result and isinstance(result, str):
                await ctx.msg.reply(result)

            await self._run_hooks("after_response", ctx)
        except Exception as e:
            logger.warning(
                "command_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            await command.middleware.execute_error(ctx, e)

    # --- Help ---

    def help_lines(self) -> List[str]:
        """One line per pattern command: ``  - <pattern>: <description>``."""
        lines = []
        for command in self.commands:
            if command.original_pattern is None:
                continue
            description = command.description or "No description"
            lines.append(f"  - {command.display_pattern}: {description}")
        return lines

    async def _send_help(self, ctx: Context) -> None:
        await ctx.msg.reply("*Available Commands:*\n" + "\n".join(self.help_lines()))

"""Auth commands: login, logout, whoami."""

from __future__ import annotations

import time

import click

from ._common import CommandEnv, console, default_relay_factory, fail, home_option, info, reporting, success
from ..audit import LOGIN, LOGOUT
from ..auth import device_login
from ..errors import Unauthorized


def register_auth_commands(main: click.Group) -> None:
    """Register login, logout and whoami."""

    @main.command("login")
    @home_option
    @click.option("--max-wait", type=float, default=None, help="Give up after N seconds.")
    @click.pass_context
    def login(ctx, home, max_wait):
        """Authenticate this machine with the relay.

        Opens the browser on the approval page and waits. The first
        login on a machine also creates and registers its identity key.
        """
        env = CommandEnv(ctx, home)
        obj = ctx.obj
        factory = obj.get("relay_factory", default_relay_factory)
        config = env.config

        def relay_for_token(token):
            return factory(config.model_copy(update={"auth_token": token}))

        def open_browser(url):
            info("Opening browser to authorize...")
            console.print(f"  [dim]{url}[/]")
            return obj.get("open_browser", click.launch)(url)

        with reporting("Login"):
            with console.status("Waiting for authorization..."):
                result = device_login(
                    env.relay,
                    env.config_store,
                    env.keystore,
                    open_browser=open_browser,
                    relay_for_token=relay_for_token,
                    sleep=obj.get("sleep", time.sleep),
                    max_wait=max_wait,
                )
            env.audit(LOGIN, f"Logged in as {result.email}", user_id=result.user_id)
            if result.identity_created:
                info("Generated and registered a new identity key.")
            success(f"Logged in as {result.email}")

    @main.command("logout")
    @home_option
    @click.pass_context
    def logout(ctx, home):
        """Forget the session token. Keys stay on disk."""
        env = CommandEnv(ctx, home)
        env.config_store.clear_session()
        env.audit(LOGOUT, "Session cleared")
        success("Logged out.")

    @main.command("whoami")
    @home_option
    @click.pass_context
    def whoami(ctx, home):
        """Show the user the relay knows this session as."""
        env = CommandEnv(ctx, home)
        with reporting("Fetching user"):
            try:
                me = env.relay.whoami()
            except Unauthorized:
                fail("Not logged in. Run `envrelay login` to authenticate.")
            success(f"Logged in as {me.email} ({me.user_id})")

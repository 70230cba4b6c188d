#!/usr/bin/env python3
"""
Generate a bearer token for the bridge and print the matching API_KEYS entry.

Usage:
    python scripts/generate_token.py --username alice
    python scripts/generate_token.py --username ci --prefix brg_ --length 48
"""

import hashlib
import secrets

import click

DEFAULT_PREFIX = "brg_"


def generate_secure_token(username: str, prefix: str = DEFAULT_PREFIX, length: int = 32) -> str:
    """
    Generate a random token, salted with the username.

    Args:
        username: Username mixed into the salt
        prefix: Prefix the bridge expects (API_TOKEN_PREFIX)
        length: Number of random bytes to draw

    Returns:
        Token in format: <prefix><32 hex characters>
    """
    salt = hashlib.sha256(username.encode()).digest()
    digest = hashlib.sha256(salt + secrets.token_bytes(length)).hexdigest()
    return f"{prefix}{digest[:32]}"


@click.command()
@click.option(
    '--username',
    prompt='Enter username for logs',
    help='Username the bridge logs for requests made with this token'
)
@click.option(
    '--prefix',
    default=DEFAULT_PREFIX,
    show_default=True,
    help='Token prefix, must match API_TOKEN_PREFIX'
)
@click.option(
    '--length',
    default=32,
    show_default=True,
    type=click.IntRange(min=16),
    help='Number of random bytes to draw'
)
def main(username: str, prefix: str, length: int):
    """Generate a bearer token for the bridge."""
    username = username.strip()
    if not username:
        raise click.BadParameter("Username cannot be empty", param_hint="--username")

    if ':' in username or ';' in username:
        raise click.BadParameter("Username cannot contain ':' or ';'", param_hint="--username")

    token = generate_secure_token(username, prefix, length)

    click.echo()
    click.echo("Add to .env (append with ';' if API_KEYS already exists):")
    click.echo(f"API_KEYS={username}:{token}")
    if prefix != DEFAULT_PREFIX:
        click.echo(f"API_TOKEN_PREFIX={prefix}")
    click.echo()


if __name__ == '__main__':
    main()

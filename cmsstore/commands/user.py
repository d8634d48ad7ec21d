"""User management CLI commands."""

import click
from flask.cli import with_appcontext

from cmsstore.errors import CMSError
from cmsstore.models import UserRole, UserStatus
from cmsstore.services.users import UserRepository, hash_password


@click.group('user')
def user_commands():
    """User management commands."""
    pass


@user_commands.command('create')
@click.option('--username', required=True, help='Username')
@click.option('--email', required=True, help='User email')
@click.option('--password', required=True, help='User password')
@click.option('--role', type=click.Choice([r.value for r in UserRole]), default=UserRole.ADMIN.value, show_default=True)
@with_appcontext
def create_user(username, email, password, role):
    """Create an active user account."""
    password_hash, salt = hash_password(password)
    try:
        user = UserRepository().insert({
            'username': username,
            'email': email,
            'password_hash': password_hash,
            'salt': salt,
            'role': role,
            'status': UserStatus.ACTIVE.value,
        })
    except CMSError as e:
        click.echo(click.style(f'Error: {e.message}', fg='red'))
        return

    click.echo(click.style('User created successfully!', fg='green'))
    click.echo(f'  ID: {user.id}')
    click.echo(f'  Username: {username}')
    click.echo(f'  Email: {user.email}')
    click.echo(f'  Role: {role}')

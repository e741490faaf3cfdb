"""
Django management command to bootstrap the single primary admin account.

Usage:
    python manage.py init_admin
    python manage.py init_admin --email ops@example.com --password 's3cret!' --name Ops

Idempotent: run it on every deploy.
- No admin yet: the account holding the email is promoted, or a new one is created
- Admins exist: the oldest stays primary and takes the configured email,
  password and name; every other admin is demoted back to role-pending
- Another account already holding the email is moved aside first
"""

import logging

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.utils import timezone

from core.models import User, UserRole
from core.onboarding import change_role

logger = logging.getLogger(__name__)


def replaced_email(email: str, stamp: int) -> str:
    """local@domain -> local+replaced_<stamp>@domain"""
    local, _, domain = email.partition('@')
    return f'{local}+replaced_{stamp}@{domain}'


class Command(BaseCommand):
    help = 'Create or update the primary admin account and demote any other admin'

    def add_arguments(self, parser):
        parser.add_argument('--email', default=settings.ADMIN_EMAIL)
        parser.add_argument('--password', default=settings.ADMIN_PASSWORD)
        parser.add_argument('--name', default=settings.ADMIN_NAME)

    def handle(self, *args, **options):
        email = User.objects.normalize_email((options['email'] or '').strip())
        password = options['password']
        name = options['name'] or ''

        if not email:
            raise CommandError('An admin email is required (--email or ADMIN_EMAIL).')
        if not password:
            raise CommandError('An admin password is required (--password or ADMIN_PASSWORD).')

        with transaction.atomic():
            admins = list(User.objects.filter(role=UserRole.ADMIN).order_by('date_joined', 'email'))
            holder = User.objects.filter(email__iexact=email).first()

            if not admins:
                if holder is not None:
                    primary = holder
                    self.stdout.write(f'Promoting existing account {email}')
                else:
                    primary = User.objects.create_user(email=email, password=password, display_name=name)
                    self.stdout.write(f'Created account {email}')
                extras = []
            else:
                primary, extras = admins[0], admins[1:]
                if holder is not None and holder.pk != primary.pk:
                    moved_to = replaced_email(holder.email, int(timezone.now().timestamp()))
                    holder.email = moved_to
                    holder.save(update_fields=['email'])
                    self.stdout.write(self.style.WARNING(f'Moved conflicting account aside: {moved_to}'))

            primary.email = email
            primary.display_name = name
            primary.set_password(password)
            primary.save(update_fields=['email', 'display_name', 'password'])
            if primary.role != UserRole.ADMIN or not primary.is_staff:
                change_role(primary, UserRole.ADMIN)

            for extra in extras:
                change_role(extra, None)
                self.stdout.write(self.style.WARNING(f'Demoted extra admin {extra.email}'))

        logger.info(f"[ADMIN] Primary admin is {email} ({len(extras)} demoted)")
        self.stdout.write(self.style.SUCCESS(f'Primary admin ready: {email}'))

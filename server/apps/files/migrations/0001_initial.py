import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import server.apps.files.infrastructure.identifiers

_PERMISSION_CHOICES = [
    ('public', 'Public'),
    ('private', 'Private'),
    ('inherit', 'Inherit'),
]

_EXPIRATION_CHOICES = [
    ('infinite', 'Never expires'),
    ('1d', '1 day'),
    ('2d', '2 days'),
    ('3d', '3 days'),
    ('7d', '7 days'),
    ('14d', '14 days'),
    ('30d', '30 days'),
    ('90d', '90 days'),
    ('180d', '180 days'),
]

_STATUS_CHOICES = [
    ('reserved', 'Reserved'),
    ('validated', 'Validated'),
    ('failed', 'Failed'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Directory',
            fields=[
                ('id', models.CharField(default=server.apps.files.infrastructure.identifiers.generate_id, editable=False, max_length=12, primary_key=True, serialize=False)),
                ('full_path', models.CharField(help_text='Absolute path, "/" for the root', max_length=1024)),
                ('default_permissions', models.CharField(choices=_PERMISSION_CHOICES, default='private', max_length=16)),
                ('default_expiration_policy', models.CharField(choices=_EXPIRATION_CHOICES, default='infinite', max_length=16)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='directories', to=settings.AUTH_USER_MODEL)),
                ('parent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='children', to='files.directory')),
            ],
            options={
                'verbose_name': 'Directory',
                'verbose_name_plural': 'Directories',
                'ordering': ['full_path'],
                'constraints': [
                    models.UniqueConstraint(fields=('owner', 'full_path'), name='directories_owner_path_unique'),
                ],
            },
        ),
        migrations.CreateModel(
            name='File',
            fields=[
                ('id', models.CharField(default=server.apps.files.infrastructure.identifiers.generate_id, editable=False, max_length=12, primary_key=True, serialize=False)),
                ('filename', models.CharField(max_length=255)),
                ('full_path', models.CharField(help_text='Directory path + filename', max_length=1024)),
                ('mime_type', models.CharField(blank=True, help_text='Declared by the client or backfilled from storage', max_length=255, null=True)),
                ('size_bytes', models.BigIntegerField(blank=True, help_text='Known only after upload verification', null=True)),
                ('permissions', models.CharField(choices=_PERMISSION_CHOICES, default='private', max_length=16)),
                ('status', models.CharField(choices=_STATUS_CHOICES, db_index=True, default='reserved', max_length=16)),
                ('expiration_policy', models.CharField(choices=_EXPIRATION_CHOICES, default='infinite', max_length=16)),
                ('expires_at', models.DateTimeField(blank=True, null=True)),
                ('object_key', models.CharField(blank=True, help_text='<environment>/<policy>/<owner_id>/<file_id>', max_length=255, null=True, unique=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('directory', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='files', to='files.directory')),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='files', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'File',
                'verbose_name_plural': 'Files',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['owner', 'full_path'], name='files_owner_path_idx'),
                    models.Index(fields=['owner', '-created_at'], name='files_owner_recent_idx'),
                ],
            },
        ),
    ]

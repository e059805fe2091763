# Generated migration for MessagingApp

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Conversation',
            fields=[
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('kind', models.CharField(choices=[('DIRECT', 'Direct'), ('GROUP', 'Group')], db_index=True, max_length=12)),
                ('title', models.CharField(blank=True, default='', max_length=120)),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('direct_key', models.CharField(blank=True, help_text="Deterministic key for DIRECT conversations ('<user1>:<user2>').", max_length=80, null=True, unique=True)),
                ('last_message_id', models.BigIntegerField(blank=True, editable=False, null=True)),
                ('last_message_preview', models.CharField(blank=True, default='', max_length=200)),
                ('last_message_at', models.DateTimeField(blank=True, db_index=True, null=True)),
                ('allow_file_sharing', models.BooleanField(default=True)),
                ('allow_voice_messages', models.BooleanField(default=True)),
                ('auto_delete_enabled', models.BooleanField(default=False)),
                ('auto_delete_after_days', models.PositiveIntegerField(default=30)),
                ('created_by', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='conversations_created', to=settings.AUTH_USER_MODEL)),
                ('last_message_sender', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'indexes': [
                    models.Index(fields=['kind', 'is_active'], name='conv_kind_active_idx'),
                    models.Index(fields=['-last_message_at'], name='conv_last_msg_at_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Participant',
            fields=[
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('role', models.CharField(choices=[('ADMIN', 'Admin'), ('MEMBER', 'Member')], default='MEMBER', max_length=10)),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('joined_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('last_seen_at', models.DateTimeField(blank=True, null=True)),
                ('notifications_enabled', models.BooleanField(default=True)),
                ('unread_count', models.PositiveIntegerField(default=0)),
                ('conversation', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='participants', to='MessagingApp.conversation')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='participations', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'indexes': [
                    models.Index(fields=['user', 'is_active'], name='part_user_active_idx'),
                    models.Index(fields=['conversation', 'role'], name='part_conv_role_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('conversation', 'user'), name='uniq_participant_per_conversation'),
                    models.CheckConstraint(condition=models.Q(('unread_count__gte', 0)), name='participant_unread_non_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Message',
            fields=[
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('type', models.CharField(choices=[('TEXT', 'Text'), ('FILE', 'File'), ('VOICE', 'Voice'), ('EMOJI', 'Emoji'), ('SYSTEM', 'System')], db_index=True, default='TEXT', max_length=10)),
                ('text', models.TextField(blank=True, default='')),
                ('client_id', models.CharField(blank=True, help_text='Idempotency key from client', max_length=64, null=True)),
                ('is_edited', models.BooleanField(default=False)),
                ('edited_at', models.DateTimeField(blank=True, null=True)),
                ('is_deleted', models.BooleanField(db_index=True, default=False)),
                ('deleted_at', models.DateTimeField(blank=True, null=True)),
                ('delivery_status', models.CharField(choices=[('SENT', 'Sent'), ('DELIVERED', 'Delivered'), ('READ', 'Read')], db_index=True, default='SENT', max_length=10)),
                ('conversation', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='messages', to='MessagingApp.conversation')),
                ('reply_to', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='replies', to='MessagingApp.message')),
                ('sender', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='messages_sent', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['created_at', 'id'],
                'indexes': [
                    models.Index(fields=['conversation', 'created_at'], name='msg_conv_created_idx'),
                    models.Index(fields=['sender', 'created_at'], name='msg_sender_created_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('client_id__isnull', False)), fields=('conversation', 'client_id'), name='uniq_message_conversation_client_id'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Attachment',
            fields=[
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('kind', models.CharField(choices=[('FILE', 'File'), ('VOICE', 'Voice'), ('IMAGE', 'Image')], default='FILE', max_length=10)),
                ('file_name', models.CharField(max_length=255)),
                ('storage_uri', models.CharField(max_length=500)),
                ('byte_size', models.PositiveBigIntegerField(default=0)),
                ('mime_type', models.CharField(blank=True, default='', max_length=120)),
                ('duration_seconds', models.FloatField(blank=True, null=True)),
                ('message', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='attachments', to='MessagingApp.message')),
            ],
            options={
                'ordering': ['id'],
                'indexes': [
                    models.Index(fields=['message'], name='att_message_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Reaction',
            fields=[
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('emoji', models.CharField(max_length=32)),
                ('message', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='reactions', to='MessagingApp.message')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='reactions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['created_at', 'id'],
                'indexes': [
                    models.Index(fields=['message'], name='react_message_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('message', 'user', 'emoji'), name='uniq_reaction_per_user_per_emoji'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Receipt',
            fields=[
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('status', models.CharField(choices=[('DELIVERED', 'Delivered'), ('READ', 'Read')], db_index=True, default='DELIVERED', max_length=12)),
                ('delivered_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('read_at', models.DateTimeField(blank=True, null=True)),
                ('message', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='receipts', to='MessagingApp.message')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='receipts', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'indexes': [
                    models.Index(fields=['user', 'status'], name='rcpt_user_status_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('message', 'user'), name='uniq_receipt_per_user'),
                ],
            },
        ),
        migrations.CreateModel(
            name='MessageAudit',
            fields=[
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('event', models.CharField(choices=[('EDIT', 'Edit'), ('DELETE', 'Delete')], max_length=10)),
                ('old_text', models.TextField(blank=True, default='')),
                ('new_text', models.TextField(blank=True, default='')),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, to=settings.AUTH_USER_MODEL)),
                ('message', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='audit_logs', to='MessagingApp.message')),
            ],
            options={
                'indexes': [
                    models.Index(fields=['message', 'event'], name='audit_msg_event_idx'),
                ],
            },
        ),
    ]

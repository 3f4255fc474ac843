from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('rbac', '0001_initial'),
    ]

    operations = [
        migrations.AddConstraint(
            model_name='userinvitation',
            constraint=models.UniqueConstraint(
                condition=models.Q(('accepted_at__isnull', True), ('revoked_at__isnull', True), ('deleted_at__isnull', True)),
                fields=('email',),
                name='unique_open_invitation_email',
            ),
        ),
    ]

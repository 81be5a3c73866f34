from django.db import migrations, models


def forwards(apps, schema_editor):
    Order = apps.get_model('orders', 'Order')
    Order.objects.filter(payment_mode='COD').update(payment_mode='CASH_ON_DELIVERY')


def backwards(apps, schema_editor):
    Order = apps.get_model('orders', 'Order')
    Order.objects.filter(payment_mode='CASH_ON_DELIVERY').update(payment_mode='COD')


class Migration(migrations.Migration):

    dependencies = [
        ('orders', '0001_initial'),
    ]

    operations = [
        migrations.AlterField(
            model_name='order',
            name='payment_mode',
            field=models.CharField(choices=[('CASH_ON_DELIVERY', 'Cash on Delivery'), ('ONLINE', 'Online')], max_length=20),
        ),
        migrations.AlterField(
            model_name='order',
            name='payment_status',
            field=models.CharField(choices=[('PENDING', 'Pending'), ('PAID', 'Paid'), ('FAILED', 'Failed')], db_index=True, default='PENDING', max_length=20),
        ),
        migrations.RunPython(forwards, backwards),
    ]

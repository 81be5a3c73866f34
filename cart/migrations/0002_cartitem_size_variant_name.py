from django.db import migrations, models


def copy_variant_names(apps, schema_editor):
    CartItem = apps.get_model('cart', 'CartItem')
    for item in CartItem.objects.filter(size_variant__isnull=False).select_related('size_variant'):
        item.size_variant_name = item.size_variant.name
        item.save(update_fields=['size_variant_name'])


class Migration(migrations.Migration):

    dependencies = [
        ('cart', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='cartitem',
            name='size_variant_name',
            field=models.CharField(blank=True, default='', help_text='Name of the chosen size; kept if the variant is deleted', max_length=100),
        ),
        migrations.RunPython(copy_variant_names, migrations.RunPython.noop),
    ]

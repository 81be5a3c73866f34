from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Product',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(db_index=True, help_text='Product name for display and search', max_length=200)),
                ('description', models.TextField(blank=True, default='', help_text='Optional product description')),
                ('price', models.DecimalField(decimal_places=2, help_text='Current catalog price', max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.00'))])),
                ('category', models.CharField(choices=[('curtains-furnishing', 'Curtains & Furnishing'), ('blinds', 'Blinds'), ('bean-bags', 'Bean Bags'), ('wallpaper', 'Wallpaper'), ('carpets-rugs', 'Carpets & Rugs')], db_index=True, help_text='Product category', max_length=40)),
                ('stock_quantity', models.PositiveIntegerField(default=0, help_text='Units available when the product has no size variants')),
                ('in_stock', models.BooleanField(db_index=True, default=True, help_text='Cleared automatically when stock reaches zero')),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='Whether product is available for ordering')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Product',
                'verbose_name_plural': 'Products',
                'ordering': ['name'],
                'indexes': [
                    models.Index(fields=['name', 'is_active'], name='inventory_p_name_3c1f2e_idx'),
                    models.Index(fields=['category', 'is_active'], name='inventory_p_categor_8d2a41_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SizeVariant',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text="Display name, e.g. '5x7 ft'", max_length=100)),
                ('length', models.DecimalField(blank=True, decimal_places=2, max_digits=8, null=True)),
                ('width', models.DecimalField(blank=True, decimal_places=2, max_digits=8, null=True)),
                ('height', models.DecimalField(blank=True, decimal_places=2, max_digits=8, null=True)),
                ('unit', models.CharField(default='cm', max_length=10)),
                ('price', models.DecimalField(decimal_places=2, help_text='Price of this size', max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.00'))])),
                ('stock_quantity', models.PositiveIntegerField(default=0)),
                ('in_stock', models.BooleanField(default=True)),
                ('product', models.ForeignKey(help_text='Product this size belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='size_variants', to='inventory.product')),
            ],
            options={
                'verbose_name': 'Size Variant',
                'verbose_name_plural': 'Size Variants',
                'ordering': ['product', 'id'],
            },
        ),
    ]

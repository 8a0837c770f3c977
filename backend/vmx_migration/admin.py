from django.contrib import admin

from .models import (
    MigrationQueueItem,
    MigrationQueueLog,
    MigrationSelection,
    NetappController,
    ProxmoxCluster,
    ProxmoxHost,
    SelectedNetappVolume,
)


@admin.register(MigrationQueueItem)
class MigrationQueueItemAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "vm_id", "status", "created_at", "updated_at")
    list_filter = ("status", "created_at")
    search_fields = ("name", "vmx_path")
    ordering = ("created_at", "id")


@admin.register(MigrationQueueLog)
class MigrationQueueLogAdmin(admin.ModelAdmin):
    list_display = ("id", "item_id", "run_id", "step", "level", "created_at")
    list_filter = ("level", "step")
    search_fields = ("run_id", "message")
    ordering = ("-created_at",)


@admin.register(MigrationSelection)
class MigrationSelectionAdmin(admin.ModelAdmin):
    list_display = ("id", "cluster", "host", "storage_identifier", "selected_volume", "updated_at")


@admin.register(ProxmoxCluster)
class ProxmoxClusterAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "username")


@admin.register(ProxmoxHost)
class ProxmoxHostAdmin(admin.ModelAdmin):
    list_display = ("id", "cluster", "hostname", "host_address")


@admin.register(NetappController)
class NetappControllerAdmin(admin.ModelAdmin):
    list_display = ("id", "hostname", "ip_address", "is_primary")


@admin.register(SelectedNetappVolume)
class SelectedNetappVolumeAdmin(admin.ModelAdmin):
    list_display = ("id", "volume_name", "vserver", "controller", "disabled")
    list_filter = ("disabled",)

from django.urls import path

from escrow import views

app_name = 'escrow'

urlpatterns = [
    path('admin/orders', views.AdminOrdersView.as_view(), name='orders'),
    path('admin/audit', views.AdminAuditLogView.as_view(), name='audit'),
    path('admin/chain/orders', views.ChainOrdersOverviewView.as_view(), name='chain-orders'),
    path('admin/chain/orders/<str:order_id>', views.ChainOrderDetailView.as_view(), name='chain-order'),
    path('admin/chain/orders/<str:order_id>/sync', views.ChainOrderSyncView.as_view(), name='chain-order-sync'),
    path('admin/chain/cancel', views.ChainCancelView.as_view(), name='chain-cancel'),
    path('admin/chain/resolve', views.ChainResolveView.as_view(), name='chain-resolve'),
    path('admin/chain/auto-cancel', views.ChainAutoCancelView.as_view(), name='chain-auto-cancel'),
    path('admin/chain/auto-finalize', views.ChainAutoFinalizeView.as_view(), name='chain-auto-finalize'),
    path('admin/chain/cleanup-missing', views.ChainCleanupMissingView.as_view(), name='chain-cleanup-missing'),
    path('admin/chain/reconcile', views.ChainReconcileView.as_view(), name='chain-reconcile'),
    path('admin/chain/cache', views.ChainCacheView.as_view(), name='chain-cache'),
    path('admin/ledger/credit', views.LedgerCreditView.as_view(), name='ledger-credit'),
    path('cron/chain-sync', views.CronChainSyncView.as_view(), name='cron-chain-sync'),
    path('cron/chain/auto-cancel', views.CronAutoCancelView.as_view(), name='cron-auto-cancel'),
    path('cron/chain/auto-finalize', views.CronAutoFinalizeView.as_view(), name='cron-auto-finalize'),
    path('cron/chain/cleanup-missing', views.CronCleanupMissingView.as_view(), name='cron-cleanup-missing'),
]

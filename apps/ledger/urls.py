from rest_framework.routers import DefaultRouter

from apps.ledger.views import CreditNoteViewSet, InstallmentViewSet, OrderViewSet

router = DefaultRouter()
router.register("orders", OrderViewSet, basename="order")
router.register("installments", InstallmentViewSet, basename="installment")
router.register("credit-notes", CreditNoteViewSet, basename="credit-note")

urlpatterns = router.urls

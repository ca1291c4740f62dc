"""Reconciliation orchestrator.

Every push event, pulled product and operator write runs through the same
pipeline inside one locked transaction:

    resolve identity -> merge entity fields -> apply stock -> commit

Shopify is only called for pull imports and operator writes, never while
processing a push event.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import select, text
from sqlalchemy.orm import Session, selectinload

from ..database import Store
from ..middleware.webhook_validator import SignatureVerifier
from ..models.payloads import ProductInput, ProductPayload
from ..models.processed_event import ProcessedEvent
from ..models.product import Product, Variant
from ..models.sync_record import (
    Origin,
    RecordKind,
    StockInstruction,
    StockMode,
    SyncRecord,
    VariantRecord,
    build_pull_record,
    build_push_record,
    parse_payload,
    product_record,
)
from ..models.sync_result import SyncResult
from ..models.unit_of_work import ProcessingOutcome, UnitOfWork, UnitState
from ..utils.exceptions import (
    AuthenticationError,
    BaseAppException,
    ConfigurationError,
    NotFoundError,
    PersistenceError,
    RemoteErrorKind,
    RemotePlatformError,
    ValidationError,
)
from ..utils.logger import get_error_logger, get_sync_logger
from .entity_merger import EntityMerger, MergeAction
from .identity_resolver import IdentityResolver
from .locks import VariantLockRegistry
from .retry import RetryPolicy
from .stock_ledger import StockLedger


@dataclass
class _Resolution:
    product: Optional[Product] = None
    variants: List[Tuple[VariantRecord, Optional[Variant]]] = field(default_factory=list)


class ReconciliationService:
    """
    Sequences verifier, resolver, merger and ledger for each unit of work
    and owns its transaction boundary.

    A failure inside one unit of work rolls back everything that unit
    touched and is reported in its ``ProcessingOutcome``; it never
    propagates to sibling units.
    """

    def __init__(
        self,
        store: Store,
        client=None,
        verifier: Optional[SignatureVerifier] = None,
        resolver: Optional[IdentityResolver] = None,
        merger: Optional[EntityMerger] = None,
        ledger: Optional[StockLedger] = None,
        locks: Optional[VariantLockRegistry] = None,
        retry_policy: Optional[RetryPolicy] = None,
        location_id: Optional[int] = None,
        page_size: int = 50,
    ):
        """
        Args:
            store: Local store of record
            client: Shopify API client; only needed for pulls and operator writes
            verifier: Webhook signature verifier; only needed for push events
            location_id: Inventory events for other locations are ignored when set
            page_size: Products per page during a bulk import
        """
        self.store = store
        self.client = client
        self.verifier = verifier
        self.resolver = resolver or IdentityResolver()
        self.merger = merger or EntityMerger()
        self.ledger = ledger or StockLedger()
        self.locks = locks or VariantLockRegistry()
        self.retry_policy = retry_policy or RetryPolicy()
        self.location_id = location_id
        self.page_size = page_size
        self.logger = get_sync_logger()
        self.error_logger = get_error_logger()

    # ------------------------------------------------------------------
    # Push events
    # ------------------------------------------------------------------

    def handle_event(
        self,
        topic: Optional[str],
        body: bytes,
        signature: Optional[str],
        event_id: Optional[str] = None,
        shop_domain: Optional[str] = None,
    ) -> ProcessingOutcome:
        """
        Authenticate and reconcile one webhook delivery.

        Args:
            topic: X-Shopify-Topic header
            body: Raw request body, exactly as received
            signature: X-Shopify-Hmac-SHA256 header
            event_id: X-Shopify-Webhook-Id header; makes redeliveries no-ops
            shop_domain: X-Shopify-Shop-Domain header, checked when given

        Returns:
            The outcome; REJECTED when authentication fails
        """
        if self.verifier is None:
            raise ConfigurationError("No webhook signature verifier configured")

        unit = UnitOfWork(topic=topic or "unknown", origin=Origin.PUSH.value, event_id=event_id)

        try:
            self.verifier.verify(body, signature)
            if shop_domain is not None:
                self.verifier.validate_shop_domain(shop_domain)
        except AuthenticationError as e:
            unit.reject(e)
            self.logger.warning(f"Rejected {unit.topic} event {event_id or '(no id)'}: {e.message}")
            return unit.outcome()

        unit.advance(UnitState.AUTHENTICATED)
        self.logger.info(f"Received {unit.topic} event {event_id or '(no id)'}")

        try:
            record = build_push_record(unit.topic, body, event_id=event_id, location_id=self.location_id)
        except ValidationError as e:
            return self._fail(unit, e)

        if record is None:
            self.logger.info(f"Ignoring {unit.topic} event {event_id or '(no id)'}")
            unit.action = "ignored"
            unit.advance(UnitState.COMMITTED)
            return unit.outcome()

        unit.external_id = record.external_product_id
        if event_id is None and record.has_deltas:
            self.logger.warning(
                f"{unit.topic} event has no delivery id; a redelivery would apply its stock deltas again"
            )

        return self._reconcile(record, unit)

    # ------------------------------------------------------------------
    # Pull imports
    # ------------------------------------------------------------------

    def import_product(self, external_product_id: int) -> ProcessingOutcome:
        """Fetch one product from Shopify and reconcile it."""
        unit = UnitOfWork(topic="pull/product", origin=Origin.PULL.value, external_id=external_product_id)
        try:
            client = self._require_client()
            data = self.retry_policy.call(client.get_product, external_product_id)
            record = build_pull_record(data)
        except BaseAppException as e:
            return self._fail(unit, e)
        return self._reconcile(record, unit)

    def import_all_products(self) -> SyncResult:
        """
        Page through every Shopify product and reconcile each one.

        A product that fails is recorded in the result and the import moves
        on. Only a page that cannot be fetched stops the enumeration.
        """
        self.logger.info("=" * 60)
        self.logger.info("Starting full product import from Shopify")
        self.logger.info("=" * 60)

        result = SyncResult(success=True)
        result.metadata["pages"] = 0

        try:
            client = self._require_client()
            page_info = None
            while True:
                products, page_info = self.retry_policy.call(
                    client.list_products, self.page_size, page_info
                )
                result.metadata["pages"] += 1
                self.logger.info(f"Fetched page {result.metadata['pages']}: {len(products)} products")

                for data in products:
                    result.record(self._import_snapshot(data))

                if not page_info:
                    break

        except BaseAppException as e:
            result.success = False
            result.metadata["aborted"] = {"error_type": e.kind, "message": e.message}
            self.error_logger.error(f"Product enumeration aborted [{e.kind}]: {e.message}")

        result.finalize()
        self.logger.info(result.get_summary())
        return result

    def _import_snapshot(self, data: Any) -> ProcessingOutcome:
        external_id = data.get("id") if isinstance(data, dict) else None
        unit = UnitOfWork(topic="pull/product", origin=Origin.PULL.value, external_id=external_id)
        try:
            record = build_pull_record(data)
        except ValidationError as e:
            return self._fail(unit, e)
        return self._reconcile(record, unit)

    # ------------------------------------------------------------------
    # Operator writes
    # ------------------------------------------------------------------

    def create_product(self, data: Dict[str, Any], sync_remote: bool = True) -> ProcessingOutcome:
        """
        Create a product locally and, when ``sync_remote``, in Shopify first.

        Shopify mints the product, variant and inventory item ids while the
        draft's SKU locks are held. Those are released before the local insert
        takes its full key set, so a ``products/create`` delivery for the same
        product can interleave but never deadlock. Initial
        ``inventory_quantity`` values become stock on both sides; a quantity
        Shopify refuses stays at Shopify's level locally and is reported in
        ``warnings``.
        """
        unit = UnitOfWork(topic="local/create", origin=Origin.LOCAL.value)
        try:
            draft = parse_payload(ProductInput, data)
            if not draft.title:
                raise ValidationError("Cannot create a product without a title", details={"field": "title"})
        except ValidationError as e:
            return self._fail(unit, e)

        if not sync_remote:
            return self._reconcile(product_record(draft, unit.topic, Origin.LOCAL), unit)

        try:
            with self.locks.hold({f"sku:{v.sku}" for v in draft.variants if v.sku}):
                record = self._create_remote(draft, unit)
        except BaseAppException as e:
            outcome = self._fail(unit, e)
        else:
            outcome = self._reconcile(record, unit)

        if not outcome.committed and unit.external_id is not None:
            self.error_logger.error(
                f"Shopify product {unit.external_id} was created but the local insert failed; "
                f"run import-product {unit.external_id} to reconcile"
            )
        elif outcome.warnings:
            self.error_logger.error(
                f"Shopify product {unit.external_id} created with stock not pushed; "
                f"run set-stock for variants {outcome.local_variant_ids}: {'; '.join(outcome.warnings)}"
            )
        return outcome

    def _create_remote(self, draft: ProductInput, unit: UnitOfWork) -> SyncRecord:
        client = self._require_client()
        remote = self.retry_policy.call(client.create_product, draft.to_remote())
        if isinstance(remote, dict):
            unit.external_id = remote.get("id")
        payload = parse_payload(ProductPayload, remote)
        record = product_record(payload, "local/create", Origin.LOCAL)

        wanted = {
            self._option_key(v): v.inventory_quantity
            for v in draft.variants
            if v.inventory_quantity is not None
        }
        for remote_variant, vrec in zip(payload.variants, record.variants):
            vrec.stock = None
            quantity = wanted.get(self._option_key(remote_variant))
            if quantity is None:
                continue
            if remote_variant.inventory_item_id is not None and client.location_id is not None:
                try:
                    self.retry_policy.call(
                        client.set_inventory_level, remote_variant.inventory_item_id, quantity
                    )
                except RemotePlatformError as e:
                    unit.warnings.append(
                        f"inventory item {remote_variant.inventory_item_id} (sku={remote_variant.sku}) "
                        f"not set to {quantity}: [{e.kind}] {e.message}"
                    )
                    continue
            vrec.stock = StockInstruction.absolute(quantity)
        return record

    @staticmethod
    def _option_key(variant) -> Tuple[Optional[str], ...]:
        # Shopify keeps option combinations unique within a product.
        return (variant.option1 or "Default Title", variant.option2, variant.option3)

    def update_product(self, local_product_id: int, data: Dict[str, Any],
                       sync_remote: bool = True) -> ProcessingOutcome:
        """
        Update product fields (and variants by identity).

        With ``sync_remote`` and a bound Shopify id, Shopify is updated first
        and its response is merged; otherwise the given fields are merged and
        every variant entry must carry an id, inventory item id or SKU.
        """
        unit = UnitOfWork(topic="local/update", origin=Origin.LOCAL.value)
        try:
            changes = parse_payload(ProductInput, data)
            product = self._get_local(Product, local_product_id)
            unit.external_id = product.external_id

            if sync_remote and product.external_id is not None:
                client = self._require_client()
                remote = self.retry_policy.call(client.update_product, product.external_id, changes.to_remote())
                payload = parse_payload(ProductPayload, remote)
            else:
                anonymous = [
                    i for i, v in enumerate(changes.variants)
                    if v.id is None and v.inventory_item_id is None and not v.sku
                ]
                if anonymous:
                    raise ValidationError(
                        "Variants in a local update need an id, inventory_item_id or sku",
                        details={"variants": anonymous}
                    )
                payload = changes
            record = product_record(
                payload,
                unit.topic,
                Origin.LOCAL,
                creation_worthy=False,
                local_product_id=local_product_id,
            )
            record.external_product_id = product.external_id
        except BaseAppException as e:
            return self._fail(unit, e)
        return self._reconcile(record, unit)

    def delete_product(self, local_product_id: int, sync_remote: bool = True) -> ProcessingOutcome:
        """Delete a product and its variants; already gone in Shopify is fine."""
        unit = UnitOfWork(topic="local/delete", origin=Origin.LOCAL.value)
        try:
            product = self._get_local(Product, local_product_id)
            unit.external_id = product.external_id

            if sync_remote and product.external_id is not None:
                client = self._require_client()
                try:
                    self.retry_policy.call(client.delete_product, product.external_id)
                except RemotePlatformError as e:
                    if e.error_kind != RemoteErrorKind.NOT_FOUND:
                        raise
                    self.logger.info(f"Shopify product {product.external_id} already deleted")
        except BaseAppException as e:
            return self._fail(unit, e)

        record = SyncRecord(
            kind=RecordKind.PRODUCT_DELETE,
            origin=Origin.LOCAL,
            topic=unit.topic,
            external_product_id=product.external_id,
            local_product_id=local_product_id,
        )
        return self._reconcile(record, unit)

    def set_stock(self, local_variant_id: int, quantity: int, sync_remote: bool = True) -> ProcessingOutcome:
        """Set a variant's on-hand quantity, in Shopify first when ``sync_remote``."""
        unit = UnitOfWork(topic="local/set_stock", origin=Origin.LOCAL.value)
        try:
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 0:
                raise ValidationError(
                    f"Stock quantity must be a non-negative integer, got {quantity!r}",
                    details={"quantity": quantity}
                )
            self._push_stock(unit, local_variant_id, sync_remote, "set_inventory_level", quantity)
        except BaseAppException as e:
            return self._fail(unit, e)

        return self._reconcile(self._stock_record(unit, local_variant_id, StockInstruction.absolute(quantity)), unit)

    def adjust_stock(self, local_variant_id: int, delta: int, sync_remote: bool = True) -> ProcessingOutcome:
        """Add a signed amount to a variant's stock (floored at zero locally)."""
        unit = UnitOfWork(topic="local/adjust_stock", origin=Origin.LOCAL.value)
        try:
            if not isinstance(delta, int) or isinstance(delta, bool):
                raise ValidationError(f"Stock adjustment must be an integer, got {delta!r}", details={"delta": delta})
            self._push_stock(unit, local_variant_id, sync_remote, "adjust_inventory_level", delta)
        except BaseAppException as e:
            return self._fail(unit, e)

        return self._reconcile(self._stock_record(unit, local_variant_id, StockInstruction.delta(delta)), unit)

    def _push_stock(self, unit: UnitOfWork, local_variant_id: int, sync_remote: bool,
                    method: str, amount: int) -> None:
        variant = self._get_local(Variant, local_variant_id)
        unit.external_id = variant.external_id
        if not sync_remote:
            return
        if variant.inventory_item_id is None:
            self.logger.warning(
                f"Variant {variant.id} has no Shopify inventory item yet; stock is only changed locally"
            )
            return
        client = self._require_client()
        self.retry_policy.call(getattr(client, method), variant.inventory_item_id, amount)

    @staticmethod
    def _stock_record(unit: UnitOfWork, local_variant_id: int, stock: StockInstruction) -> SyncRecord:
        return SyncRecord(
            kind=RecordKind.STOCK,
            origin=Origin.LOCAL,
            topic=unit.topic,
            variants=[VariantRecord(local_variant_id=local_variant_id, stock=stock)],
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_products(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """Local products with their variants and on-hand stock, oldest first."""
        stmt = (
            select(Product)
            .options(selectinload(Product.variants))
            .order_by(Product.id)
            .limit(limit)
            .offset(offset)
        )
        with self.store.session() as session:
            return [product.to_dict() for product in session.execute(stmt).scalars()]

    def get_product(self, local_product_id: int) -> Dict[str, Any]:
        """
        Raises:
            NotFoundError: No local product with that id
        """
        with self.store.session() as session:
            product = session.get(Product, local_product_id)
            if product is None:
                raise NotFoundError(
                    f"Product {local_product_id} not found",
                    details={"local_id": local_product_id}
                )
            return product.to_dict()

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def list_locations(self) -> List[Dict[str, Any]]:
        client = self._require_client()
        return self.retry_policy.call(client.list_locations)

    def test_connection(self) -> Dict[str, Dict[str, Any]]:
        """Check the local store and the Shopify API."""
        self.logger.info("Testing connections...")

        results = {
            "database": {"success": False, "error": None},
            "shopify": {"success": False, "error": None, "locations": 0},
        }

        try:
            with self.store.session() as session:
                session.execute(text("SELECT 1"))
            results["database"]["success"] = True
            self.logger.info("✓ Local store reachable")
        except BaseAppException as e:
            results["database"]["error"] = e.message
            self.logger.error(f"✗ Local store unreachable: {e.message}")

        try:
            locations = self.list_locations()
            results["shopify"]["success"] = True
            results["shopify"]["locations"] = len(locations)
            self.logger.info(f"✓ Shopify connection successful ({len(locations)} locations)")
        except BaseAppException as e:
            results["shopify"]["error"] = e.message
            self.logger.error(f"✗ Shopify connection failed: {e.message}")

        return results

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _reconcile(self, record: SyncRecord, unit: UnitOfWork) -> ProcessingOutcome:
        """Run one record through resolve, merge and stock in one locked transaction."""
        touched: Dict[str, Any] = {}
        try:
            keys = self._lock_keys(record)
            with self.locks.hold(keys):
                with self.store.transaction() as session:
                    if record.event_id and self._is_processed(session, record.event_id):
                        unit.duplicate = True
                    else:
                        resolution = self._resolve(session, record)
                        unit.advance(UnitState.RESOLVED)

                        created = self._merge(session, record, resolution, unit)
                        session.flush()
                        unit.advance(UnitState.MERGED)

                        self._apply_stock(record, resolution, created, unit)
                        unit.advance(UnitState.STOCK_APPLIED)

                        if record.event_id:
                            session.add(ProcessedEvent(
                                event_id=record.event_id,
                                topic=record.topic,
                                external_id=self._event_subject(record),
                            ))
                        touched = self._touched(resolution)

        except PersistenceError as e:
            conflicted = unit.state in (UnitState.AUTHENTICATED, UnitState.STOCK_APPLIED)
            if record.event_id and conflicted and self._event_recorded(record.event_id):
                # A concurrent delivery of the same event committed first.
                unit.reset_effects()
                unit.duplicate = True
            else:
                return self._fail(unit, e, record)
        except BaseAppException as e:
            return self._fail(unit, e, record)
        except Exception as e:
            self.error_logger.error(f"Unexpected error processing {record.topic}: {str(e)}", exc_info=True)
            error = BaseAppException(f"Unexpected error: {str(e)}", details={"error_type": type(e).__name__})
            return self._fail(unit, error, record)

        if unit.duplicate:
            unit.action = "duplicate"
            self.logger.info(f"Event {record.event_id} already processed; skipping")
        else:
            unit.local_product_id = touched.get("product_id")
            unit.local_variant_ids = touched.get("variant_ids", [])

        unit.advance(UnitState.COMMITTED)
        self._log_commit(unit)
        return unit.outcome()

    def _lock_keys(self, record: SyncRecord) -> Set[str]:
        """Lock names covering every variant the record could touch."""
        keys = set()
        if record.event_id:
            keys.add(f"event:{record.event_id}")
        if record.external_product_id is not None:
            keys.add(f"product:{record.external_product_id}")
        if record.local_product_id is not None:
            keys.add(f"local_product:{record.local_product_id}")

        for vrec in record.variants:
            if vrec.local_variant_id is not None:
                keys.add(f"variant:{vrec.local_variant_id}")
            if vrec.external_variant_id is not None:
                keys.add(f"external_variant:{vrec.external_variant_id}")
            if vrec.inventory_item_id is not None:
                keys.add(f"inventory_item:{vrec.inventory_item_id}")
            if vrec.sku:
                keys.add(f"sku:{vrec.sku}")

        with self.store.session() as session:
            keys.update(f"variant:{vid}" for vid in self.resolver.candidate_ids(session, record.variants))

            product = None
            if record.local_product_id is not None:
                product = session.get(Product, record.local_product_id)
            elif record.external_product_id is not None:
                product = self.resolver.resolve_product(session, record.external_product_id)
            if product is not None:
                keys.add(f"local_product:{product.id}")
                keys.update(f"variant:{variant.id}" for variant in product.variants)

        return keys

    def _resolve(self, session: Session, record: SyncRecord) -> _Resolution:
        resolution = _Resolution()
        for vrec in record.variants:
            resolution.variants.append((vrec, self._resolve_variant(session, vrec)))

        if record.kind == RecordKind.STOCK:
            return resolution

        if record.local_product_id is not None:
            resolution.product = self._get_for_update(session, Product, record.local_product_id)
        else:
            resolution.product = self.resolver.resolve_product(session, record.external_product_id, lock=True)

        if resolution.product is None and record.kind == RecordKind.PRODUCT_SNAPSHOT:
            # Variants already known locally identify their product.
            owner = next((v.product for _, v in resolution.variants if v is not None), None)
            resolution.product = owner
        return resolution

    def _resolve_variant(self, session: Session, vrec: VariantRecord) -> Optional[Variant]:
        if vrec.local_variant_id is not None:
            return self._get_for_update(session, Variant, vrec.local_variant_id)
        return self.resolver.resolve_variant(session, vrec, lock=True)

    def _merge(self, session: Session, record: SyncRecord, resolution: _Resolution,
               unit: UnitOfWork) -> Set[int]:
        """Merge product and variant fields; returns ``id()`` of variants created here."""
        created: Set[int] = set()

        if record.kind == RecordKind.STOCK:
            unit.action = "stock"
            for vrec, variant in resolution.variants:
                if variant is None:
                    unit.unmatched.append(vrec.describe())
                    self.logger.warning(
                        f"{record.topic}: no local variant for {vrec.describe()}; skipped"
                    )
            return created

        product, action = self.merger.merge_product(session, resolution.product, record)
        resolution.product = product
        unit.action = action.value
        self._count(unit, action)
        if record.kind == RecordKind.PRODUCT_DELETE:
            return created

        session.flush()
        merged = []
        for vrec, variant in resolution.variants:
            variant, vaction = self.merger.merge_variant(session, product, variant, vrec)
            if vaction == MergeAction.CREATED:
                created.add(id(variant))
            self._count(unit, vaction)
            merged.append((vrec, variant))
        resolution.variants = merged
        return created

    def _apply_stock(self, record: SyncRecord, resolution: _Resolution, created: Set[int],
                     unit: UnitOfWork) -> None:
        if record.kind == RecordKind.PRODUCT_DELETE:
            return

        # Only Shopify-originated stock needs a bound inventory item.
        require_inventory_item = record.origin == Origin.PUSH
        for vrec, variant in resolution.variants:
            stock = vrec.stock
            if variant is None or stock is None:
                continue
            if stock.only_if_created and id(variant) not in created:
                continue

            is_new = id(variant) in created
            if stock.mode == StockMode.ABSOLUTE:
                change = self.ledger.set_absolute(
                    variant, stock.quantity, require_inventory_item=require_inventory_item and not is_new
                )
            else:
                change = self.ledger.apply_delta(
                    variant, stock.quantity, require_inventory_item=require_inventory_item
                )
            unit.stock_changes.append(change)

    @staticmethod
    def _count(unit: UnitOfWork, action: MergeAction) -> None:
        if action == MergeAction.CREATED:
            unit.created += 1
        elif action == MergeAction.UPDATED:
            unit.updated += 1
        elif action == MergeAction.UNCHANGED:
            unit.unchanged += 1
        elif action == MergeAction.DELETED:
            unit.deleted += 1

    @staticmethod
    def _touched(resolution: _Resolution) -> Dict[str, Any]:
        product = resolution.product
        return {
            "product_id": product.id if product is not None else None,
            "variant_ids": [v.id for _, v in resolution.variants if v is not None and v.id is not None],
        }

    @staticmethod
    def _event_subject(record: SyncRecord) -> Optional[str]:
        if record.external_product_id is not None:
            return str(record.external_product_id)
        if record.variants:
            return record.variants[0].describe()[:64]
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _is_processed(session: Session, event_id: str) -> bool:
        stmt = select(ProcessedEvent.id).where(ProcessedEvent.event_id == event_id)
        return session.execute(stmt).first() is not None

    def _event_recorded(self, event_id: str) -> bool:
        try:
            with self.store.session() as session:
                return self._is_processed(session, event_id)
        except PersistenceError:
            return False

    @staticmethod
    def _get_for_update(session: Session, model, local_id: int):
        entity = session.get(model, local_id, with_for_update=True)
        if entity is None:
            raise NotFoundError(
                f"{model.__name__} {local_id} not found",
                details={"local_id": local_id}
            )
        return entity

    def _get_local(self, model, local_id: int):
        with self.store.session() as session:
            entity = session.get(model, local_id)
            if entity is None:
                raise NotFoundError(
                    f"{model.__name__} {local_id} not found",
                    details={"local_id": local_id}
                )
            return entity

    def _require_client(self):
        if self.client is None:
            raise ConfigurationError(
                "Shopify client is not configured",
                details={"settings": ["SHOPIFY_SHOP_URL", "SHOPIFY_ACCESS_TOKEN"]}
            )
        return self.client

    def _fail(self, unit: UnitOfWork, error: BaseAppException,
              record: Optional[SyncRecord] = None) -> ProcessingOutcome:
        unit.reset_effects()
        if record is not None:
            error.details.setdefault("context", record.context())
        unit.fail(error)

        self.error_logger.error(
            f"{unit.topic} failed [{error.kind}]: {error.message} "
            f"(event={unit.event_id}, external_id={unit.external_id}, "
            f"local_product_id={record.local_product_id if record else None})",
            extra={"details": error.details}
        )
        return unit.outcome()

    def _log_commit(self, unit: UnitOfWork) -> None:
        if unit.duplicate:
            return
        applied = [c for c in unit.stock_changes if c.applied]
        self.logger.info(
            f"{unit.topic} committed: action={unit.action}, created={unit.created}, "
            f"updated={unit.updated}, deleted={unit.deleted}, stock changes={len(applied)}, "
            f"unmatched={len(unit.unmatched)}"
        )

    def close(self) -> None:
        if self.client is not None:
            self.client.close()


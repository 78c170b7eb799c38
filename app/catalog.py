import structlog
from sqlalchemy import select, update

from app.errors import InsufficientStock, NotFound, ProductUnavailable
from app.models import Product

logger = structlog.get_logger(__name__)


def get_active_product(db, product_id: str) -> Product:
    product = db.scalar(select(Product).where(Product.id == product_id, Product.is_active.is_(True)))
    if product is None:
        raise NotFound("Product not found", productId=product_id)
    return product


def lock_product(db, product_id: str, name: str = None) -> Product:
    """Fetch an active product holding an exclusive row lock until commit."""
    product = db.scalar(
        select(Product)
        .where(Product.id == product_id, Product.is_active.is_(True))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if product is None:
        raise ProductUnavailable(
            f'Product "{name or product_id}" is no longer available',
            productId=product_id,
        )
    return product


def ensure_stock(product: Product, requested: int) -> None:
    if requested > product.stock:
        raise InsufficientStock(product.id, product.name, requested, product.stock)


def reserve_stock(db, product: Product, quantity: int) -> None:
    # Guarded decrement: stays correct even where FOR UPDATE is a no-op.
    result = db.execute(
        update(Product)
        .where(Product.id == product.id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.refresh(product)
        raise InsufficientStock(product.id, product.name, quantity, product.stock)
    db.refresh(product)


def restore_stock(db, items) -> None:
    for item in items:
        db.execute(
            update(Product)
            .where(Product.id == item.product_id)
            .values(stock=Product.stock + item.quantity)
            .execution_options(synchronize_session=False)
        )
        logger.info("Stock restored", product_id=item.product_id, quantity=item.quantity)

from fastapi import APIRouter, Depends
from kmerch.api import version_prefix
from kmerch.api.dependencies import require_admin
from kmerch.cart.routes import carts_router
from kmerch.common.routes import home_router
from kmerch.orders.routes import orders_admin_router, orders_router
from kmerch.preorders.routes import preorders_router
from kmerch.products.routes import prods_admin_router, prods_public_router
from kmerch.promos.routes import promos_admin_router, promos_router
from kmerch.reviews.routes import reviews_router
from kmerch.riders.routes import pickups_admin_router, riders_router
from kmerch.uploads.routes import uploads_router
from kmerch.wishlist.routes import wishlist_router


public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(prods_public_router, prefix="/products", tags=["products-public"])
public_routers.include_router(reviews_router, prefix="/products", tags=["reviews"])
public_routers.include_router(preorders_router, prefix="/pre-orders", tags=["pre-orders"])
public_routers.include_router(carts_router, prefix="/cart", tags=["cart"])
public_routers.include_router(wishlist_router, prefix="/wishlist", tags=["wishlist"])
public_routers.include_router(promos_router, prefix="/promos", tags=["promos"])
public_routers.include_router(orders_router, tags=["orders"])
public_routers.include_router(uploads_router, prefix="/uploads", tags=["uploads"])
public_routers.include_router(riders_router, prefix="/riders", tags=["riders"])
public_routers.include_router(home_router, tags=["home"])

#--------------------------------------------------------------------------------------------------------

admin_routers = APIRouter(prefix=f"{version_prefix}/admin", dependencies=[Depends(require_admin)])

admin_routers.include_router(prods_admin_router, prefix="/products", tags=["products-admin"])
admin_routers.include_router(promos_admin_router, prefix="/promos", tags=["promos-admin"])
admin_routers.include_router(orders_admin_router, prefix="/orders", tags=["orders-admin"])
admin_routers.include_router(pickups_admin_router, prefix="/pickup-requests", tags=["riders-admin"])

from fastapi import FastAPI
import uvicorn
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from core.auth import fastapi_users, auth_backend
from core.errors import setup_exception_handlers
from core.logging_config import configure_logging
from db.database import create_db_and_tables
from routers.inventory import router as inventory_router
from routers.orders import router as orders_router
from routers.purchase_orders import router as purchase_orders_router
from schemas.users import UserRead, UserCreate, UserUpdate


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await create_db_and_tables()
    yield


app = FastAPI(
    title="Stock API",
    description="Inventory ledger, order fulfilment and purchase receiving",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)

# Authentication routes (fastapi-users)
app.include_router(fastapi_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"],)
app.include_router(fastapi_users.get_register_router(UserRead, UserCreate), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_users_router(UserRead, UserUpdate), prefix="/users", tags=["users"])

# Stock routes
app.include_router(inventory_router, prefix="/inventory", tags=["inventory"])
app.include_router(orders_router, prefix="/orders", tags=["orders"])
app.include_router(purchase_orders_router, prefix="/purchase-orders", tags=["purchase-orders"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)

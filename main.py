import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from db import users_collection
from logging_setup import setup_logging
from routers.users import users_router, create_user_in_db, UserRole
from routers.submissions import submissions_router
from routers.screening_rules import screening_rules_router
from routers.donors import donors_router
from routers.appointments import appointments_router
from routers.payments import payments_router
from routers.documents import documents_router
from routers.consents import consents_router
from routers.questionnaires import questionnaires_router
from routers.follow_ups import follow_ups_router
from routers.voice_ai import voice_ai_router
from routers.dashboard import dashboard_router

setup_logging()
logger = logging.getLogger(__name__)


def bootstrap_admin():
    """Create the first admin from ADMIN_EMAIL/ADMIN_PASSWORD when no users exist."""
    email = os.getenv("ADMIN_EMAIL")
    password = os.getenv("ADMIN_PASSWORD")
    if not email or not password or users_collection.count_documents({}) > 0:
        return
    create_user_in_db({
        "email": email,
        "password": password,
        "full_name": os.getenv("ADMIN_FULL_NAME", "Administrator"),
        "role": UserRole.ADMIN.value,
    })
    logger.info("Created initial admin account %s", email)


@asynccontextmanager
async def lifespan(app: FastAPI):
    bootstrap_admin()
    yield


app = FastAPI(
    title = "MarrowLink Donor Management",
    description = "Donor intake, screening and back-office API for a bone marrow donation program",
    lifespan=lifespan,
)

# Homepage
@app.get("/", tags=["Home"])
def get_home():
    return {"message": "Welcome to MarrowLink!"}

# Include routers
app.include_router(users_router)

app.include_router(submissions_router)

app.include_router(screening_rules_router)

app.include_router(donors_router)

app.include_router(appointments_router)

app.include_router(payments_router)

app.include_router(documents_router)

app.include_router(consents_router)

app.include_router(questionnaires_router)

app.include_router(follow_ups_router)

app.include_router(voice_ai_router)

app.include_router(dashboard_router)

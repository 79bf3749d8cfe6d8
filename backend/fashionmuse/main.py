from fastapi import FastAPI, Depends, HTTPException, Request, status
from contextlib import asynccontextmanager
from typing import List, Optional
import logging


from . import config, errors, schemas
from .ai_core import ImageEditClient
from .database import Store
from .ledger import CREDIT_PLANS
from .services import Services, build_services

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Most specific first.
ERROR_STATUS_CODES = [
    (errors.DuplicateEmail, status.HTTP_409_CONFLICT),
    (errors.DuplicateAssociation, status.HTTP_409_CONFLICT),
    (errors.MissingReference, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (errors.InvalidCredentials, status.HTTP_401_UNAUTHORIZED),
    (errors.UserNotFound, status.HTTP_404_NOT_FOUND),
    (errors.UnknownPlan, status.HTTP_404_NOT_FOUND),
    (errors.InsufficientCredits, status.HTTP_402_PAYMENT_REQUIRED),
    (errors.InvalidAmount, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (errors.InvalidGenerationRequest, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (errors.ImageTooLarge, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE),
    (errors.RateLimited, status.HTTP_429_TOO_MANY_REQUESTS),
    (errors.GenerationCancelled, status.HTTP_409_CONFLICT),
    (errors.GenerationError, status.HTTP_502_BAD_GATEWAY),
]


def http_error(exc: errors.FashionMuseError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def create_app(store: Optional[Store] = None, image_client: Optional[ImageEditClient] = None) -> FastAPI:

    # --- Application Lifecycle ---
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application startup: opening store and wiring services.")
        app.state.services = build_services(store or Store(), image_client)
        yield
        logger.info("Application shutdown: closing store.")
        app.state.services.close()

    app = FastAPI(
        title="FashionMuse Backend",
        description="Accounts, credits, image history and AI fashion-photo generation.",
        version="0.1.0",
        lifespan=lifespan,
    )
    _register_routes(app)
    return app


def get_services(request: Request) -> Services:
    """
    Dependency returning the services wired to the application's store.
    """
    return request.app.state.services


def _register_routes(app: FastAPI) -> None:

    @app.get("/", summary="Root Endpoint", description="A simple welcome message for the API.")
    def root():
        """Root endpoint to check if the API is running."""
        return {"message": "Welcome to FashionMuse Backend!"}

    # --- Auth ---

    @app.post(
        "/auth/signup",
        response_model=schemas.UserResponse,
        status_code=status.HTTP_201_CREATED,
        summary="Sign Up",
    )
    def sign_up(request: schemas.SignUpRequest, services: Services = Depends(get_services)):
        """Registers a new user and grants the sign-up credits."""
        logger.info(f"POST /auth/signup - Email: '{request.email}'")
        try:
            return services.auth.sign_up(request.name, request.email, request.password)
        except errors.FashionMuseError as e:
            logger.warning(f"Sign-up failed: {e}")
            raise http_error(e)

    @app.post("/auth/signin", response_model=schemas.UserResponse, summary="Sign In")
    def sign_in(request: schemas.SignInRequest, services: Services = Depends(get_services)):
        """Checks email and password and returns the user."""
        logger.info(f"POST /auth/signin - Email: '{request.email}'")
        try:
            return services.auth.sign_in(request.email, request.password)
        except errors.FashionMuseError as e:
            raise http_error(e)

    # --- Users ---

    @app.get("/users/{user_id}", response_model=schemas.UserResponse, summary="Get User")
    def read_user(user_id: str, services: Services = Depends(get_services)):
        """Retrieves a user by ID."""
        user = services.auth.get_user(user_id)
        if user is None:
            logger.warning(f"User with ID {user_id} not found.")
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return user

    @app.patch(
        "/users/{user_id}",
        response_model=schemas.UserResponse,
        summary="Update Profile",
        description="Updates a user profile. Only provided fields are updated.",
    )
    def update_profile(user_id: str, update: schemas.ProfileUpdate, services: Services = Depends(get_services)):
        """Updates name, email or profile image of a user."""
        logger.info(f"PATCH /users/{user_id} - Fields: {sorted(update.model_dump(exclude_unset=True))}")
        try:
            return services.auth.update_profile(user_id, update)
        except errors.FashionMuseError as e:
            raise http_error(e)

    @app.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete Account")
    def delete_account(user_id: str, services: Services = Depends(get_services)):
        """Deletes a user and everything they own."""
        logger.info(f"DELETE /users/{user_id}")
        if not services.auth.delete_account(user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found for deletion")
        return None

    # --- Credits ---

    @app.get("/plans", response_model=List[schemas.CreditPlan], summary="List Credit Plans")
    def list_plans():
        """Lists the purchasable credit plans."""
        return list(CREDIT_PLANS.values())

    @app.get("/users/{user_id}/credits", response_model=schemas.BalanceResponse, summary="Get Balance")
    def read_balance(user_id: str, services: Services = Depends(get_services)):
        """Returns the current credit balance of a user."""
        return schemas.BalanceResponse(user_id=user_id, credits=services.ledger.get_balance(user_id))

    @app.post("/users/{user_id}/credits/add", response_model=schemas.BalanceResponse, summary="Add Credits")
    def add_credits(user_id: str, request: schemas.CreditAmountRequest, services: Services = Depends(get_services)):
        """Adds credits to a user and logs a purchase."""
        try:
            balance = services.ledger.add_credits(user_id, request.amount, description=request.description or "purchase")
        except errors.FashionMuseError as e:
            raise http_error(e)
        return schemas.BalanceResponse(user_id=user_id, credits=balance)

    @app.post("/users/{user_id}/credits/deduct", response_model=schemas.BalanceResponse, summary="Deduct Credits")
    def deduct_credits(user_id: str, request: schemas.CreditAmountRequest, services: Services = Depends(get_services)):
        """Deducts credits from a user if the balance allows it."""
        try:
            balance = services.ledger.deduct_credits(user_id, request.amount, reason=request.description or "generation")
        except errors.FashionMuseError as e:
            raise http_error(e)
        return schemas.BalanceResponse(user_id=user_id, credits=balance)

    @app.post("/users/{user_id}/credits/purchase", response_model=schemas.BalanceResponse, summary="Purchase Plan")
    def purchase_credits(user_id: str, request: schemas.PurchaseRequest, services: Services = Depends(get_services)):
        """Credits a user with the amount of a plan."""
        try:
            balance = services.ledger.purchase_credits(user_id, request.plan_id)
        except errors.FashionMuseError as e:
            raise http_error(e)
        return schemas.BalanceResponse(user_id=user_id, credits=balance)

    @app.get(
        "/users/{user_id}/transactions",
        response_model=List[schemas.TransactionResponse],
        summary="List Transactions",
        description="Newest first.",
    )
    def list_transactions(user_id: str, services: Services = Depends(get_services)):
        """Lists the credit transactions of a user."""
        return services.ledger.list_transactions(user_id)

    # --- Images & history ---

    @app.get("/users/{user_id}/images", response_model=List[schemas.ImageResponse], summary="List Images")
    def list_images(user_id: str, services: Services = Depends(get_services)):
        """Lists the images stored for a user, newest first."""
        return services.archive.list_user_images(user_id)

    @app.post(
        "/users/{user_id}/images",
        response_model=schemas.ImageResponse,
        status_code=status.HTTP_201_CREATED,
        summary="Upload Original Image",
    )
    def upload_image(user_id: str, request: schemas.ImageCreateRequest, services: Services = Depends(get_services)):
        """Stores an original image uploaded by a user."""
        try:
            return services.archive.save_image(user_id, request.image_data, request.mime_type, is_original=True)
        except errors.FashionMuseError as e:
            raise http_error(e)

    @app.delete("/images/{image_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete Image")
    def delete_image(image_id: str, services: Services = Depends(get_services)):
        """Deletes a single image."""
        if not services.archive.delete_image(image_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Image not found for deletion")
        return None

    @app.get("/users/{user_id}/history", response_model=List[schemas.HistoryEntry], summary="Load History")
    def load_history(user_id: str, services: Services = Depends(get_services)):
        """Loads the generation history of a user, newest first."""
        return services.archive.load_history(user_id)

    @app.delete("/history/{history_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete History Entry")
    def delete_history(history_id: str, services: Services = Depends(get_services)):
        """Deletes a history entry; its images are kept."""
        logger.info(f"DELETE /history/{history_id}")
        if not services.archive.delete_history(history_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="History entry not found for deletion")
        return None

    # --- Generation ---

    @app.post(
        "/generate/",
        response_model=schemas.GenerationResponse,
        status_code=status.HTTP_201_CREATED,
        summary="Generate Fashion Photos",
        description="Generates `count` AI variations of the source image, stores them as one history entry and charges one credit per image produced.",
    )
    def generate(request: schemas.GenerationRequest, services: Services = Depends(get_services)):
        """Runs a generation request for a user."""
        logger.info(f"POST /generate/ - User: '{request.user_id}', Count: {request.count}")
        try:
            result = services.generation.generate(
                request.user_id, request.image, request.count, style=request.style
            )
        except errors.FashionMuseError as e:
            logger.error(f"Generation failed for user '{request.user_id}': {e}")
            raise http_error(e)
        return schemas.GenerationResponse(
            images=result.images,
            history_id=result.history_id,
            requested=result.requested,
            produced=result.produced,
        )


app = create_app()

from .crud_user import user
from . import crud_application
from . import crud_booking
from . import crud_opportunity

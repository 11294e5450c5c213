from flask_cors import CORS
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sock import Sock
from flask_wtf.csrf import CSRFProtect

cors = CORS()
csrf = CSRFProtect()
migrate = Migrate()
sock = Sock()
login_manager = LoginManager()

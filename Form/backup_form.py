from wtforms import PasswordField, StringField
from wtforms.validators import DataRequired, Length, Optional, Regexp
from Form.forms import ApiForm
from Form.server_form import HOST_RE


class PBSCredentialForm(ApiForm):
    pbs_ip = StringField("PBS host", validators=[DataRequired(), Regexp(HOST_RE, message="Invalid host")])
    pbs_datastore = StringField("Datastore", validators=[DataRequired(), Length(max=128)])
    pbs_password = PasswordField("Password", validators=[Optional()])
    pbs_fingerprint = StringField("Fingerprint", validators=[Optional(), Length(max=128)])


class RestoreForm(ApiForm):
    storage = StringField("Target storage", validators=[Optional(), Length(max=128)])

from wtforms import IntegerField, PasswordField, StringField, TextAreaField
from wtforms.validators import AnyOf, DataRequired, Length, NumberRange, Optional, Regexp
from Form.forms import ApiForm

HOST_RE = r"^[A-Za-z0-9]([A-Za-z0-9.\-:]*[A-Za-z0-9])?$"
COLOR_RE = r"^#[0-9A-Fa-f]{6}$"


class ServerForm(ApiForm):
    name = StringField("Tên server", validators=[DataRequired(), Length(max=128)])
    ip = StringField("IP / hostname", validators=[DataRequired(), Regexp(HOST_RE, message="Invalid host")])
    user = StringField("SSH user", validators=[Optional(), Length(max=128)])
    password = PasswordField("SSH password", validators=[Optional()])
    auth_type = StringField("Auth type", validators=[Optional(), AnyOf(["password", "key"])])
    ssh_key = TextAreaField("Private key", validators=[Optional()])
    ssh_key_passphrase = PasswordField("Key passphrase", validators=[Optional()])
    ssh_port = IntegerField("SSH port", validators=[Optional(), NumberRange(min=1, max=65535)])
    color = StringField("Màu", validators=[Optional(), Regexp(COLOR_RE, message="Color must be #rrggbb")])


class ServerUpdateForm(ServerForm):
    name = StringField("Tên server", validators=[Optional(), Length(max=128)])
    ip = StringField("IP / hostname", validators=[Optional(), Regexp(HOST_RE, message="Invalid host")])

from flask import request
from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import BooleanField, PasswordField, StringField
from wtforms.validators import InputRequired, Length, Optional


def _json_formdata():
    """JSON body -> MultiDict of strings, null and nested values dropped."""
    body = request.get_json(silent=True) or {}
    data = MultiDict()
    for key, value in body.items():
        if value is None or isinstance(value, (list, dict)):
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        data[key] = str(value)
    return data


class ApiForm(FlaskForm):
    """FlaskForm fed from the JSON body; the API has no CSRF token."""

    class Meta:
        csrf = False

    def __init__(self, *args, **kwargs):
        if "formdata" not in kwargs and request.is_json:
            kwargs["formdata"] = _json_formdata()
        super().__init__(*args, **kwargs)

    def payload(self):
        """Chỉ trả về các field client thực sự gửi lên (dùng cho PATCH/PUT)."""
        sent = request.get_json(silent=True) or {}
        return {
            name: None if sent[name] is None else field.data
            for name, field in self._fields.items()
            if name in sent
        }

    def first_error(self):
        for name, errors in self.errors.items():
            if errors:
                return f"{name}: {errors[0]}"
        return "Invalid data"


class LoginForm(ApiForm):
    username = StringField("Tên đăng nhập", validators=[InputRequired()])
    password = PasswordField("Mật khẩu", validators=[InputRequired()])


class SetupForm(ApiForm):
    username = StringField(
        "Tên đăng nhập", validators=[InputRequired(), Length(min=3, max=80)]
    )
    password = PasswordField("Mật khẩu", validators=[InputRequired(), Length(min=6)])
    enabled = BooleanField("Bật đăng nhập", validators=[Optional()])

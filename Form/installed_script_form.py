from wtforms import IntegerField, StringField, TextAreaField
from wtforms.validators import AnyOf, DataRequired, Length, NumberRange, Optional, Regexp
from Form.forms import ApiForm


class InstalledScriptForm(ApiForm):
    script_name = StringField("Script", validators=[DataRequired(), Length(max=255)])
    script_path = StringField("Path", validators=[Optional(), Length(max=512)])
    container_id = StringField(
        "Container ID", validators=[Optional(), Regexp(r"^\d+$", message="Container id must be digits")]
    )
    server_id = IntegerField("Server", validators=[Optional()])
    execution_mode = StringField("Mode", validators=[Optional(), AnyOf(["local", "ssh"])])
    status = StringField(
        "Status", validators=[Optional(), AnyOf(["in_progress", "success", "failed"])]
    )
    output_log = TextAreaField("Log", validators=[Optional()])
    web_ui_ip = StringField("Web UI IP", validators=[Optional(), Length(max=64)])
    web_ui_port = IntegerField("Web UI port", validators=[Optional(), NumberRange(min=1, max=65535)])


class InstalledScriptUpdateForm(InstalledScriptForm):
    script_name = StringField("Script", validators=[Optional(), Length(max=255)])

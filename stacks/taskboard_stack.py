import os

from aws_cdk import (
    CfnOutput,
    Duration,
    RemovalPolicy,
    Stack,
    aws_apigateway as apigw,
    aws_dynamodb as ddb,
    aws_lambda as _lambda,
    aws_logs as logs,
)
from constructs import Construct


# Only the handler package ships in the Lambda asset.
LAMBDA_ASSET_EXCLUDES = ["*", "!taskboard", "!taskboard/*.py"]


class TaskboardStack(Stack):
    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        stage_name = os.getenv("STAGE", "prod")
        data_retention_mode = os.getenv("DATA_RETENTION_MODE", "destroy").strip().lower()
        if data_retention_mode not in {"destroy", "retain"}:
            raise ValueError(
                "DATA_RETENTION_MODE must be 'destroy' or 'retain' (case-insensitive)"
            )
        # Dev-first default; set DATA_RETENTION_MODE=retain for production.
        stateful_removal_policy = (
            RemovalPolicy.DESTROY
            if data_retention_mode == "destroy"
            else RemovalPolicy.RETAIN
        )

        name_prefix = f"{construct_id}-{stage_name}"

        tasks_table = ddb.Table(
            self,
            "TasksTable",
            partition_key=ddb.Attribute(name="id", type=ddb.AttributeType.STRING),
            billing_mode=ddb.BillingMode.PAY_PER_REQUEST,
            point_in_time_recovery=True,
            removal_policy=stateful_removal_policy,
        )

        boards_table = ddb.Table(
            self,
            "BoardsTable",
            partition_key=ddb.Attribute(name="id", type=ddb.AttributeType.STRING),
            billing_mode=ddb.BillingMode.PAY_PER_REQUEST,
            point_in_time_recovery=True,
            removal_policy=stateful_removal_policy,
        )

        api_fn = _lambda.Function(
            self,
            "TaskboardApiHandler",
            runtime=_lambda.Runtime.PYTHON_3_12,
            handler="taskboard.api.handler",
            code=_lambda.Code.from_asset(".", exclude=LAMBDA_ASSET_EXCLUDES),
            timeout=Duration.seconds(10),
            environment={
                "TASKS_TABLE": tasks_table.table_name,
                "BOARDS_TABLE": boards_table.table_name,
            },
        )
        tasks_table.grant_read_write_data(api_fn)
        boards_table.grant_read_data(api_fn)

        logs.LogGroup(
            self,
            "TaskboardApiLogGroup",
            log_group_name=f"/aws/lambda/{api_fn.function_name}",
            retention=logs.RetentionDays.ONE_WEEK,
            removal_policy=stateful_removal_policy,
        )

        access_log_group = logs.LogGroup(
            self,
            "ApiAccessLogGroup",
            retention=logs.RetentionDays.ONE_WEEK,
            removal_policy=stateful_removal_policy,
        )

        rest_api = apigw.LambdaRestApi(
            self,
            "TaskboardApi",
            handler=api_fn,
            proxy=True,
            rest_api_name=f"{name_prefix}-api",
            default_cors_preflight_options=apigw.CorsOptions(
                allow_origins=apigw.Cors.ALL_ORIGINS,
                allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
                allow_headers=["Content-Type", "Authorization"],
            ),
            deploy_options=apigw.StageOptions(
                stage_name=stage_name,
                access_log_destination=apigw.LogGroupLogDestination(access_log_group),
                # Standard fields only; do not log headers.
                access_log_format=apigw.AccessLogFormat.json_with_standard_fields(
                    caller=True,
                    http_method=True,
                    ip=True,
                    protocol=True,
                    request_time=True,
                    resource_path=True,
                    response_length=True,
                    status=True,
                    user=True,
                ),
            ),
            cloud_watch_role=True,
        )

        CfnOutput(self, "ApiUrl", value=rest_api.url)
        CfnOutput(self, "TasksTableName", value=tasks_table.table_name)
        CfnOutput(self, "BoardsTableName", value=boards_table.table_name)

# /// script
# dependencies = ["diagrams"]
# ///
from diagrams import Cluster, Diagram
from diagrams.aws.compute import Lambda
from diagrams.aws.database import Dynamodb
from diagrams.aws.general import Client, General
from diagrams.aws.ml import Bedrock
from diagrams.aws.network import APIGateway, CloudFront
from diagrams.aws.security import Cognito
from diagrams.aws.storage import S3

with Diagram(
    "Serverless Chat Architecture",
    show=False,
    filename="assets/serverless_chat",
    direction="LR",  # Left-to-right flow
):
    browser = Client("Browser")

    with Cluster("Frontend"):
        cdn = CloudFront("CloudFront")
        site_bucket = S3("Site Bucket")
        user_pool = Cognito("Cognito\n(Google IdP)")

    with Cluster("Chat Backend"):
        api_gateway = APIGateway("HTTP API\n($default)")
        chat_lambda = Lambda("Chat Lambda")
        chat_table = Dynamodb("chatgpt-chats\n(userId / chatId)")

    with Cluster("Completion Service"):
        openai = General("OpenAI\nChat Completions")
        bedrock = Bedrock("Amazon Bedrock\n(alternative)")

    browser >> cdn >> site_bucket
    browser >> user_pool
    browser >> api_gateway >> chat_lambda >> chat_table
    chat_lambda >> openai
    chat_lambda >> bedrock
